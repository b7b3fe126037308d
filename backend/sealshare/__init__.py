"""SealShare: encrypted file sharing backend."""
