__version__ = "0.1.0"

# Client identifier sent in the auth and User-Agent headers
CLIENT_NAME = f"lookout/{__version__}"
