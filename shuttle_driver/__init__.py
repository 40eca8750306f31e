"""汐止福泰接駁車 司機端核心"""
__version__ = "1.0.0"
