# module maroon_backend.app
from maroon_backend.app_setup.factory import create_app

# App globale
app = create_app()
