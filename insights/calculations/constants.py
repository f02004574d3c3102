"""
Calculation Constants for Charging Insights

Centralized location for the physical constants, data-quality thresholds and
analysis bounds used in calculations.
"""

# Event types as stored in the event table
EVENT_CONNECTED = "power_connected"
EVENT_DISCONNECTED = "power_disconnected"

# Battery level domain
MIN_PERCENTAGE = 0
MAX_PERCENTAGE = 100

# Data-quality thresholds. These two serve different consumers and must stay separate.
ANOMALY_MISMATCH_THRESHOLD = 1  # is_anomalous when event_mismatch exceeds this
CLEAN_COHORT_MAX_MISMATCH = 10  # clean cohort includes users at or below this

# Carbon Constants
BATTERY_CAPACITY_WH = 14.8  # Typical smartphone battery (4000 mAh at 3.7 V)
CHARGING_EFFICIENCY = 0.85  # Charger plus battery losses
GRID_CARBON_INTENSITY = 663  # gCO2 per kWh
# Published rounding of (14.8 / 0.85 / 1000) * 663 / 100
CARBON_FACTOR = 0.1155  # gCO2 per 1% of charge gained

# Environmental equivalents, multipliers against kg of CO2
DRIVING_KM_PER_KG_CO2 = 4.8
TREE_KG_CO2_PER_YEAR = 21.77
LED_BULB_HOURS_PER_KG_CO2 = 105
STREAMING_HOURS_PER_KG_CO2 = 27.8

DAYS_PER_YEAR = 365

# Carbon insight thresholds
NIGHT_CHARGING_TIP_PERCENT = 20
FULL_CHARGE_LEVEL = 95
FULL_CHARGE_TIP_PERCENT = 40
FULL_CHARGE_SAVINGS_FRACTION = 0.15
LOW_START_LEVEL = 25
HEALTHY_START_LEVEL = 50
TOP_UP_MAX_GAIN = 30
TOP_UP_INFO_PERCENT = 30

# Usage gap and drain bounds (hours)
MAX_USAGE_GAP_HOURS = 48  # Longer gaps are treated as missing data
MIN_DRAIN_GAP_HOURS = 1
MAX_DRAIN_GAP_HOURS = 24
MAX_DRAIN_RATE_PER_HOUR = 50  # Percent per hour
MIN_DRAIN_SAMPLES_PER_HOUR = 5

# Overnight classification (local hours)
OVERNIGHT_CONNECT_FROM_HOUR = 21
OVERNIGHT_DISCONNECT_UNTIL_HOUR = 8

# Charge target classification
FULL_CHARGE_TARGET_LEVEL = 90
PARTIAL_CHARGE_TARGET_LEVEL = 50

# Distribution shaping
CDF_MAX_POINTS = 200
CDF_DURATION_CAP_MINUTES = 150
SCATTER_MAX_POINTS = 2000
SHORT_DATA_SPAN_DAYS = 5
GROUPED_BOX_PLOT_MIN_COUNT = 5
GROUPED_BOX_PLOT_LIMIT = 30
GROUPED_MAX_DURATION_MINUTES = 1440

# Statistical Constants
TUKEY_FENCE_MULTIPLIER = 1.5
DEFAULT_CONFIDENCE_LEVEL = 0.95  # 95% confidence interval
T_CRITICAL_SMALL_SAMPLE = 2.0  # Approximation for t-distribution (n < 30)
Z_CRITICAL_95_PERCENT = 1.96  # Z-score for 95% CI (large samples)
SMALL_SAMPLE_THRESHOLD = 30  # Sample size below which to use t-distribution
