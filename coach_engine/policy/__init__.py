"""
Versioned safety policy data (risk rule tables, regional crisis resources).
"""

from pathlib import Path

POLICY_DIR = Path(__file__).resolve().parent
RISK_POLICY_FILE = POLICY_DIR / "risk_policy.json"
REGIONAL_RESOURCES_FILE = POLICY_DIR / "regional_resources.json"
