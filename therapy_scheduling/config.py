"""
Application Configuration
Centralized configuration for database, planner and booking settings
"""
import os

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL")
DB_POOL_MIN_SIZE = int(os.getenv("DB_POOL_MIN_SIZE", "2"))
DB_POOL_MAX_SIZE = int(os.getenv("DB_POOL_MAX_SIZE", "10"))
DB_COMMAND_TIMEOUT = float(os.getenv("DB_COMMAND_TIMEOUT", "60"))

# Supabase (schedule lookups for voice modification)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY")
SUPABASE_SCHEMA = os.getenv("SUPABASE_SCHEMA", "public")

# Booking
# The conflict re-check must not be able to pass in two concurrent transactions,
# so anything weaker than repeatable read is rejected at store construction.
BOOKING_ISOLATION_LEVEL = os.getenv("BOOKING_ISOLATION_LEVEL", "serializable")
DEFAULT_SESSION_MINUTES = int(os.getenv("DEFAULT_SESSION_MINUTES", "60"))

# Repair planner
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
REPAIR_PLANNER_MODEL = os.getenv("REPAIR_PLANNER_MODEL", "gpt-4o-mini")
REPAIR_MAX_TOKENS = int(os.getenv("REPAIR_MAX_TOKENS", "4096"))
REPAIR_TEMPERATURE = float(os.getenv("REPAIR_TEMPERATURE", "0.1"))

# Voice modification
VOICE_MATCH_THRESHOLD = int(os.getenv("VOICE_MATCH_THRESHOLD", "40"))
