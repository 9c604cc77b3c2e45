"""SftpRelay - Drop-folder to SFTP relay."""

__version__ = "0.1.0"
