"""Progress parsing for downloader and transcoder output."""
