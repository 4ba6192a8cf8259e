"""Built-in yal native modules (io, fs, http, server)."""
