from .url_codec import checksum, decode, encode

__all__ = ["checksum", "decode", "encode"]
