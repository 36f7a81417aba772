import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Explorer configuration
EXPLORER_API_KEY = os.getenv("EXPLORER_API_KEY") or os.getenv("ETHERSCAN_API_KEY")
EXPLORER_BASE_URL = os.getenv("EXPLORER_BASE_URL", "https://api.etherscan.io/v2/api")
EXPLORER_CHAIN_ID = int(os.getenv("EXPLORER_CHAIN_ID", "137"))  # Polygon PoS

# Chain configuration
RPC_URL = os.getenv("RPC_URL", "https://polygon-rpc.com")
PRIVATE_KEY = os.getenv("PRIVATE_KEY")
NETWORK_NAME = os.getenv("NETWORK_NAME", "polygon")

# Output configuration
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "output")

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Request scheduling defaults
EXPLORER_MAX_CONCURRENT = int(os.getenv("EXPLORER_MAX_CONCURRENT", "3"))
EXPLORER_RATE_PER_SECOND = float(os.getenv("EXPLORER_RATE_PER_SECOND", "5"))

# Gas price used when the provider returns none
FALLBACK_GAS_PRICE_GWEI = 30
