"""Sequential batch orchestration over external tool runs."""
