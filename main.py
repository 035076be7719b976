"""
SpotiFLAC REST API Entry Point

Run with: uvicorn spotiflac_api.main:create_app --factory --port 8080
Or: python main.py
"""

from spotiflac_api.config import load_settings
from spotiflac_api.main import create_app

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app, factory=True, host="0.0.0.0", port=load_settings().port)
