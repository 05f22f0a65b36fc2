"""
CareerChat API entry point.

Run with: uvicorn careerchat.app:app --reload
"""

import logging

from careerchat.api.routes import create_app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create app
app = create_app()
