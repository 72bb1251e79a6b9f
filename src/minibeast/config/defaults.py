"""Default configuration values for MiniBeast deployments."""

# Prefix used for every generated AWS resource name
PRODUCT_PREFIX = "minibeat"

# Fixed provisioning order; retries resume at the first non-completed entry
STEP_ECR_REPO = "ecr-repo"
STEP_ECR_PUSH = "ecr-push"
STEP_TASK_DEFINITION = "task-definition"
STEP_ECS_SERVICE = "ecs-service"
STEP_STEP_FUNCTIONS = "step-functions"

STEP_ORDER: tuple[str, ...] = (
    STEP_ECR_REPO,
    STEP_ECR_PUSH,
    STEP_TASK_DEFINITION,
    STEP_ECS_SERVICE,
    STEP_STEP_FUNCTIONS,
)

# Task/container defaults
CONTAINER_PORT = 8080
TASK_CPU = "256"
TASK_MEMORY = "512"
IMAGE_TAG = "latest"
MAX_SUBNETS = 2
INGRESS_CIDR = "0.0.0.0/0"

# CodeBuild defaults
CODEBUILD_IMAGE = "aws/codebuild/amazonlinux2-x86_64-standard:3.0"
CODEBUILD_COMPUTE_TYPE = "BUILD_GENERAL1_MEDIUM"
ARTIFACT_KEY = "docker-image.tar"

# IAM limits
MAX_ROLE_NAME_LENGTH = 64

# Seconds to wait after creating an IAM role before it is used
PROPAGATION_DELAYS: dict[str, float] = {
    "codebuild": 30.0,
    "execution": 10.0,
    "task": 15.0,
    "stepfunctions": 30.0,
}

BUILD_POLL_INTERVAL = 5.0  # seconds
BUILD_TERMINAL_SUCCESS = "SUCCEEDED"
BUILD_IN_PROGRESS = "IN_PROGRESS"

# Number of most recent ECR images kept after a successful deployment
ECR_IMAGES_TO_KEEP = 3

# Server defaults
DEFAULT_SERVER_CONFIG: dict[str, str | int | bool] = {
    "host": "127.0.0.1",
    "port": 3002,
    "data_dir": ".minibeast",
    "upload_dir": ".minibeast/uploads",
    "cors_origins": "http://localhost:3000",
    "debug": False,
}

MAX_UPLOAD_BYTES = 2 * 1024 * 1024 * 1024  # 2 GiB
DEFAULT_MODULE = "validator"

# Workflow invocation
TEST_CASE_SQL_ENV = "TEST_CASE_SQL"
TEST_CASE_BASE_SQL = (
    "SELECT id, validation_query, expected_outcome, operator, metric_index "
    "FROM tbl_validating_test_cases WHERE is_active = TRUE"
)
EXECUTIONS_PAGE_SIZE = 10
LOG_EVENTS_LIMIT = 100
LOG_STREAMS_LIMIT = 20
LOG_WINDOW_PADDING_MS = 60_000
