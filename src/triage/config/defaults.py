"""Default configuration values."""

# Per-phase features, target components and the number of high-severity
# issues tolerated before a cycle blocks
DEFAULT_PHASE_SETTINGS = {
    "database_foundation": {
        "features": ["PostgreSQL", "Prisma", "PostGIS", "Seed Data"],
        "target_components": ["database", "schema", "migrations"],
        "parallel_patch_threshold": 3,
    },
    "agent_integration": {
        "features": ["NEXUS", "SENTINEL", "CARTOGRAPH", "WORKFORCE"],
        "target_components": ["agents", "routing", "execution"],
        "parallel_patch_threshold": 5,
    },
    "api_routes": {
        "features": ["REST endpoints", "Authentication", "Validation"],
        "target_components": ["api", "routes", "middleware"],
        "parallel_patch_threshold": 5,
    },
    "ui_components": {
        "features": ["Dashboard", "Forms", "Tables", "Charts"],
        "target_components": ["components", "pages", "styles"],
        "parallel_patch_threshold": 7,
    },
    "employee_management": {
        "features": ["CRUD", "Address Integration", "Bulk Import"],
        "target_components": ["workforce", "cartograph", "forms"],
        "parallel_patch_threshold": 5,
    },
    "capture_pipeline": {
        "features": ["SAM.gov", "Pipeline", "Bid/No-Bid"],
        "target_components": ["capture", "opportunities", "analysis"],
        "parallel_patch_threshold": 5,
    },
    "analytics_forecasting": {
        "features": ["Trends", "Forecasts", "Scenarios"],
        "target_components": ["oracle", "charts", "reports"],
        "parallel_patch_threshold": 5,
    },
    "audit_documentation": {
        "features": ["Evidence", "Gaps", "Packages"],
        "target_components": ["guardian", "archivist", "exports"],
        "parallel_patch_threshold": 5,
    },
    "partnership_features": {
        "features": ["Partners", "Synergy", "JV Analysis"],
        "target_components": ["diplomat", "advocate", "regulatory"],
        "parallel_patch_threshold": 5,
    },
    "polish_production": {
        "features": ["Performance", "Security", "Onboarding"],
        "target_components": ["all"],
        "parallel_patch_threshold": 10,
    },
}

DEFAULT_PARALLEL_PATCH_THRESHOLD = 5

# Cycle results retained for trend analysis
DEFAULT_HISTORY_CAPACITY = 50

# Regression slopes below this magnitude count as flat
DEFAULT_STABLE_SLOPE = 0.5

# Data points reported per trend
DEFAULT_TREND_WINDOW = 10

# Agents below this health score are flagged in insights
DEFAULT_UNHEALTHY_THRESHOLD = 70

# Agents reported by the metrics analyzer, even with no feedback
AGENT_ROSTER = [
    "NEXUS",
    "SENTINEL",
    "CARTOGRAPH",
    "WORKFORCE",
    "CAPTURE",
    "ADVOCATE",
    "GUARDIAN",
    "DIPLOMAT",
    "ORACLE",
    "ARCHIVIST",
]
