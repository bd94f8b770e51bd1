from .server import create_app, run_api_server
