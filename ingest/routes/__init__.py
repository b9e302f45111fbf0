# Routes package
from .upload import upload_bp
