__title__ = "httpconn"
__description__ = "A blocking HTTP/1.1 client with safe keep-alive reuse."
__version__ = "0.1.0"
