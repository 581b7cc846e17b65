"""A small active-mode FTP server and interactive client."""

__version__ = "0.1.0"
__all__ = ["protocol", "server", "client"]