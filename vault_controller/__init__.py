"""Initialize, unseal and continuously configure a Vault server."""

__version__ = "0.1.0"
