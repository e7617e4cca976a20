DEFAULT_STEP_TIMEOUT = 30.0
DEFAULT_SWEEP_BATCH_SIZE = 100
DEFAULT_SWEEP_INTERVAL = 60.0

EXECUTION_CREATE_FAILED = "execution log creation failed"
