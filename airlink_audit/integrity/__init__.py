"""File integrity: checksum computation, verification and record store."""
