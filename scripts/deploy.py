"""
deploy.py — Package the backend and deploy it to AWS Lambda with a public Function URL.

Ordered steps, each a plain sequence of `aws` CLI calls:

    package       install runtime deps for the Lambda platform and zip them
                  with the tickets_api package
    iam-role      create the execution role (if missing), attach
                  AWSLambdaBasicExecutionRole, wait, read the role ARN
    function      create the function, or update its code when it exists
    function-url  create the Function URL + public invoke permission (if
                  missing) and read the URL
    verify        optional smoke POST to /api/auth/login

"Already exists" failures are benign for create/attach calls; any other
failure aborts the run with exit code 1. Fixed waits stand in for readiness
polling.

Usage:
    uv run python scripts/deploy.py [--region sa-east-1] [--profile my-profile]
        [--verify] [--report-file .build/deploy-report.json]
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import shutil
import subprocess
import time
import tomllib
import zipfile
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import requests

logger = logging.getLogger("deploy")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

REPO_ROOT = Path(__file__).resolve().parents[1]
SOURCE_DIR = REPO_ROOT / "src"
PACKAGE_NAME = "tickets_api"
BUILD_DIR = REPO_ROOT / ".build"

DEFAULT_FUNCTION_NAME = "tickets-app-backend"
DEFAULT_REGION = "sa-east-1"
DEFAULT_RUNTIME = "python3.12"
DEFAULT_HANDLER = "tickets_api.handler.lambda_handler"
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_MEMORY_MB = 512
DEFAULT_ARCHITECTURE = "x86_64"
DEFAULT_ZIP_NAME = "lambda-deployment.zip"
DEFAULT_ROLE_WAIT_SECONDS = 10
DEFAULT_READY_WAIT_SECONDS = 5

BASIC_EXECUTION_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
FUNCTION_URL_STATEMENT_ID = "FunctionURLAllowPublicAccess"
FUNCTION_URL_CORS = "AllowOrigins=*,AllowMethods=*,AllowHeaders=*"

TRUST_POLICY: dict[str, Any] = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "lambda.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}

# aws CLI exit codes for service-side errors (254) and generic failures (255).
BENIGN_EXIT_CODES = frozenset({254, 255})
ALREADY_EXISTS_MARKER = "already exists"
NOT_FOUND_MARKER = "ResourceNotFoundException"

PLATFORM_TAGS: dict[str, str] = {
    "x86_64": "x86_64-manylinux2014",
    "arm64": "aarch64-manylinux2014",
}

SMOKE_TEST_BODY = {"email": "test@test.com", "password": "test123"}  # pragma: allowlist secret
SMOKE_TIMEOUT_SECONDS = 20
BANNER_WIDTH = 60


class DeployError(RuntimeError):
    """Base class for deployment failures."""


class PackageBuildError(DeployError):
    """Raised when the deployment package cannot be built."""


class AwsCliError(DeployError):
    """Raised when an aws CLI call fails with a non-benign error."""

    def __init__(self, *, description: str, returncode: int, stderr: str) -> None:
        self.description = description
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or "no error output"
        super().__init__(f"{description} (exit {returncode}): {detail}")


@dataclass(frozen=True)
class DeployConfig:
    function_name: str = DEFAULT_FUNCTION_NAME
    region: str = DEFAULT_REGION
    profile: str = ""
    runtime: str = DEFAULT_RUNTIME
    handler: str = DEFAULT_HANDLER
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    memory_mb: int = DEFAULT_MEMORY_MB
    architecture: str = DEFAULT_ARCHITECTURE
    zip_path: Path = REPO_ROOT / DEFAULT_ZIP_NAME
    role_wait_seconds: float = DEFAULT_ROLE_WAIT_SECONDS
    ready_wait_seconds: float = DEFAULT_READY_WAIT_SECONDS

    @property
    def role_name(self) -> str:
        return f"{self.function_name}-role"

    @property
    def profile_label(self) -> str:
        return self.profile or "default"


@dataclass(frozen=True)
class CommandResult:
    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    benign: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


@dataclass
class DeploymentSummary:
    function_name: str
    region: str
    profile: str
    started_at: str
    duration_seconds: float = 0.0
    role_arn: str | None = None
    function_url: str | None = None
    status: str = "running"
    error: str | None = None
    steps: list[dict[str, Any]] = field(default_factory=list)


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 format."""
    return datetime.now(tz=UTC).isoformat()


def config_from_env(**overrides: Any) -> DeployConfig:
    """Build a DeployConfig from AWS_REGION / AWS_PROFILE plus explicit overrides."""
    config = DeployConfig(
        region=os.environ.get("AWS_REGION", "").strip() or DEFAULT_REGION,
        profile=os.environ.get("AWS_PROFILE", "").strip(),
    )
    return replace(config, **{k: v for k, v in overrides.items() if v is not None})


# ---------------------------------------------------------------------------
# aws CLI
# ---------------------------------------------------------------------------


def aws_command(config: DeployConfig, *args: str) -> list[str]:
    """Build an aws CLI argument list with profile and region flags."""
    command = ["aws", *args]
    if config.profile:
        command.extend(["--profile", config.profile])
    command.extend(["--region", config.region])
    return command


def _display(command: list[str]) -> str:
    text = " ".join(command)
    return text if len(text) <= 80 else f"{text[:80]}..."


def run_aws(
    config: DeployConfig,
    *args: str,
    description: str,
    tolerate_existing: bool = False,
    tolerate_missing: bool = False,
) -> CommandResult:
    """Run one aws CLI call.

    A non-zero exit is returned as a benign result when the command tolerates
    existing resources and either the exit code is a CLI service error or the
    output says the resource already exists, or when the command tolerates
    missing resources and the output carries ResourceNotFoundException.
    Every other failure raises AwsCliError.
    """
    command = aws_command(config, *args)
    logger.info("Executing: %s", _display(command))
    completed = subprocess.run(command, check=False, capture_output=True, text=True)
    result = CommandResult(
        command=tuple(command),
        returncode=completed.returncode,
        stdout=(completed.stdout or "").strip(),
        stderr=(completed.stderr or "").strip(),
    )
    if result.ok:
        logger.info("Success: %s", description)
        return result

    output = result.output
    if tolerate_missing and NOT_FOUND_MARKER in output:
        logger.info("Not found: %s (exit %d)", description, result.returncode)
        return replace(result, benign=True)
    if tolerate_existing and (
        result.returncode in BENIGN_EXIT_CODES or ALREADY_EXISTS_MARKER in output.lower()
    ):
        logger.info("Already in place: %s (exit %d)", description, result.returncode)
        return replace(result, benign=True)

    logger.error("Failed: %s", description)
    logger.error("Details: %s", result.stderr or result.stdout)
    raise AwsCliError(
        description=description,
        returncode=result.returncode,
        stderr=result.stderr or result.stdout,
    )


# ---------------------------------------------------------------------------
# Packaging
# ---------------------------------------------------------------------------


def read_runtime_dependencies(pyproject_path: Path = REPO_ROOT / "pyproject.toml") -> list[str]:
    """Read [project.dependencies] from the backend's pyproject.toml."""
    if not pyproject_path.exists():
        raise PackageBuildError(f"pyproject.toml not found: {pyproject_path}")

    with pyproject_path.open("rb") as fh:
        data = tomllib.load(fh)

    deps = data.get("project", {}).get("dependencies", [])
    if not isinstance(deps, list):
        raise PackageBuildError(f"[project.dependencies] must be a list in {pyproject_path}")
    return [str(d).strip() for d in deps if str(d).strip()]


def install_dependencies(deps: list[str], target: Path, config: DeployConfig) -> None:
    """Install wheels for the Lambda runtime platform into target."""
    platform_tag = PLATFORM_TAGS.get(config.architecture)
    if platform_tag is None:
        raise PackageBuildError(f"Unsupported architecture: {config.architecture}")
    python_version = config.runtime.removeprefix("python")

    command = [
        "uv",
        "pip",
        "install",
        "--python-platform",
        platform_tag,
        "--python-version",
        python_version,
        f"--target={target}",
        "--only-binary=:all:",
        *deps,
    ]
    logger.info("Installing %d runtime dependencies for %s", len(deps), platform_tag)
    result = subprocess.run(command, check=False, capture_output=True, text=True)
    if result.returncode != 0:
        raise PackageBuildError(
            f"Dependency install failed ({result.returncode}): {(result.stderr or '').strip()}"
        )


def _add_tree(archive: zipfile.ZipFile, root: Path, prefix: str = "") -> int:
    count = 0
    for path in sorted(root.rglob("*")):
        if not path.is_file() or "__pycache__" in path.parts or path.suffix == ".pyc":
            continue
        arcname = f"{prefix}{path.relative_to(root).as_posix()}"
        archive.write(path, arcname)
        count += 1
    return count


def write_zip(zip_path: Path, *, source_dir: Path, deps_dir: Path | None) -> int:
    """Zip the application package and installed deps; return the archive size in bytes."""
    package_dir = source_dir / PACKAGE_NAME
    if not package_dir.is_dir():
        raise PackageBuildError(f"Application package not found: {package_dir}")

    zip_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(
        zip_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
    ) as archive:
        logger.info("Adding %s/ to archive", PACKAGE_NAME)
        files = _add_tree(archive, package_dir, prefix=f"{PACKAGE_NAME}/")
        if deps_dir is not None and deps_dir.is_dir():
            logger.info("Adding installed dependencies to archive")
            files += _add_tree(archive, deps_dir)

    size = zip_path.stat().st_size
    logger.info(
        "Created deployment package: %d files, %d bytes (%.2f MB)",
        files,
        size,
        size / (1024 * 1024),
    )
    return size


def staging_dir() -> Path:
    return BUILD_DIR / "deps"


def build_package(config: DeployConfig) -> dict[str, Any]:
    """Build the Lambda zip at config.zip_path."""
    deps_dir = staging_dir()
    if deps_dir.exists():
        shutil.rmtree(deps_dir)
    deps_dir.mkdir(parents=True)

    deps = read_runtime_dependencies()
    install_dependencies(deps, deps_dir, config)
    size = write_zip(config.zip_path, source_dir=SOURCE_DIR, deps_dir=deps_dir)
    return {"zipPath": str(config.zip_path), "sizeBytes": size, "dependencies": deps}


# ---------------------------------------------------------------------------
# IAM role
# ---------------------------------------------------------------------------


def ensure_role(config: DeployConfig, sleep: Callable[[float], None] = time.sleep) -> str:
    """Create the execution role if needed and return its ARN."""
    logger.info("Role name: %s", config.role_name)
    run_aws(
        config,
        "iam",
        "create-role",
        "--role-name",
        config.role_name,
        "--assume-role-policy-document",
        json.dumps(TRUST_POLICY),
        description="Create IAM role",
        tolerate_existing=True,
    )
    run_aws(
        config,
        "iam",
        "attach-role-policy",
        "--role-name",
        config.role_name,
        "--policy-arn",
        BASIC_EXECUTION_POLICY_ARN,
        description="Attach Lambda basic execution policy",
        tolerate_existing=True,
    )

    logger.info("Waiting %ss for IAM role to propagate", config.role_wait_seconds)
    sleep(config.role_wait_seconds)

    result = run_aws(
        config,
        "iam",
        "get-role",
        "--role-name",
        config.role_name,
        "--query",
        "Role.Arn",
        "--output",
        "text",
        description="Fetch role ARN",
    )
    role_arn = result.stdout.strip()
    if not role_arn or role_arn == "None":
        raise DeployError(f"Failed to create or get IAM role {config.role_name}")
    logger.info("Role ARN: %s", role_arn)
    return role_arn


# ---------------------------------------------------------------------------
# Lambda function
# ---------------------------------------------------------------------------


def function_exists(config: DeployConfig) -> bool:
    result = run_aws(
        config,
        "lambda",
        "get-function",
        "--function-name",
        config.function_name,
        description="Check whether function exists",
        tolerate_missing=True,
    )
    return result.ok


def deploy_function(
    config: DeployConfig,
    role_arn: str,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Create or update the function code. Returns 'created' or 'updated'."""
    zip_uri = f"fileb://{config.zip_path}"

    if function_exists(config):
        logger.info("Function exists - updating code")
        run_aws(
            config,
            "lambda",
            "update-function-code",
            "--function-name",
            config.function_name,
            "--zip-file",
            zip_uri,
            description="Update Lambda function code",
        )
        action = "updated"
    else:
        logger.info(
            "Function does not exist - creating (runtime=%s handler=%s timeout=%ds memory=%dMB)",
            config.runtime,
            config.handler,
            config.timeout_seconds,
            config.memory_mb,
        )
        run_aws(
            config,
            "lambda",
            "create-function",
            "--function-name",
            config.function_name,
            "--runtime",
            config.runtime,
            "--role",
            role_arn,
            "--handler",
            config.handler,
            "--zip-file",
            zip_uri,
            "--timeout",
            str(config.timeout_seconds),
            "--memory-size",
            str(config.memory_mb),
            "--architectures",
            config.architecture,
            description="Create Lambda function",
        )
        action = "created"

    logger.info("Waiting %ss for function to be ready", config.ready_wait_seconds)
    sleep(config.ready_wait_seconds)
    return action


# ---------------------------------------------------------------------------
# Function URL
# ---------------------------------------------------------------------------


def ensure_function_url(config: DeployConfig) -> str:
    """Create a public Function URL if missing and return it."""
    existing = run_aws(
        config,
        "lambda",
        "get-function-url-config",
        "--function-name",
        config.function_name,
        description="Check whether Function URL exists",
        tolerate_missing=True,
    )

    if existing.ok:
        logger.info("Function URL already exists")
    else:
        logger.info("Function URL does not exist - creating (CORS %s)", FUNCTION_URL_CORS)
        run_aws(
            config,
            "lambda",
            "create-function-url-config",
            "--function-name",
            config.function_name,
            "--auth-type",
            "NONE",
            "--cors",
            FUNCTION_URL_CORS,
            description="Create Function URL",
            tolerate_existing=True,
        )
        run_aws(
            config,
            "lambda",
            "add-permission",
            "--function-name",
            config.function_name,
            "--statement-id",
            FUNCTION_URL_STATEMENT_ID,
            "--action",
            "lambda:InvokeFunctionUrl",
            "--principal",
            "*",
            "--function-url-auth-type",
            "NONE",
            description="Add public access permission",
            tolerate_existing=True,
        )

    result = run_aws(
        config,
        "lambda",
        "get-function-url-config",
        "--function-name",
        config.function_name,
        "--query",
        "FunctionUrl",
        "--output",
        "text",
        description="Fetch Function URL",
    )
    function_url = result.stdout.strip()
    if not function_url or function_url == "None":
        raise DeployError(f"Function URL missing for {config.function_name}")
    logger.info("Function URL: %s", function_url)
    return function_url


def login_url(function_url: str) -> str:
    return f"{function_url.rstrip('/')}/api/auth/login"


def verify_login(function_url: str, session: Any = None) -> dict[str, Any]:
    """POST a sample body to the login endpoint and require HTTP 200."""
    url = login_url(function_url)
    client = session or requests
    response = client.post(url, json=SMOKE_TEST_BODY, timeout=SMOKE_TIMEOUT_SECONDS)
    if response.status_code != 200:
        raise DeployError(f"Smoke test failed: POST {url} returned {response.status_code}")
    try:
        body: Any = response.json()
    except ValueError:
        logger.warning("Smoke test response from %s is not JSON", url)
        body = response.text
    return {"url": url, "statusCode": response.status_code, "body": body}


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def _banner(title: str, level: int = logging.INFO) -> None:
    logger.log(level, "=" * BANNER_WIDTH)
    logger.log(level, title)
    logger.log(level, "=" * BANNER_WIDTH)


def _run_step(
    summary: DeploymentSummary,
    name: str,
    action: Callable[[], Any],
) -> Any:
    started_at = utc_now_iso()
    status = "passed"
    try:
        return action()
    except Exception:
        status = "failed"
        raise
    finally:
        summary.steps.append(
            {
                "step": name,
                "status": status,
                "startedAt": started_at,
                "completedAt": utc_now_iso(),
            }
        )


def cleanup_package(zip_path: Path, deps_dir: Path | None = None) -> bool:
    """Delete the deployment zip and the dependency staging directory if present."""
    removed = False
    if deps_dir is not None and deps_dir.is_dir():
        shutil.rmtree(deps_dir)
        logger.info("Removed staging directory %s", deps_dir)
        removed = True
    if zip_path.exists():
        zip_path.unlink()
        logger.info("Cleaned up deployment package %s", zip_path.name)
        removed = True
    return removed


def new_summary(config: DeployConfig) -> DeploymentSummary:
    return DeploymentSummary(
        function_name=config.function_name,
        region=config.region,
        profile=config.profile_label,
        started_at=utc_now_iso(),
    )


def write_report(path: Path, summary: DeploymentSummary) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(summary), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    logger.info("Wrote deployment report: %s", path)


def run_deploy(
    config: DeployConfig,
    *,
    skip_build: bool = False,
    verify: bool = False,
    sleep: Callable[[float], None] = time.sleep,
    summary: DeploymentSummary | None = None,
) -> DeploymentSummary:
    """Run package, iam-role, function, function-url (and verify) in order.

    Step records, status and error are written into summary as the run
    progresses, so a caller holding it can report a failed run.
    """
    if summary is None:
        summary = new_summary(config)
    started = time.monotonic()

    try:
        _banner("STEP 1/4: Deployment package")
        if skip_build:
            if not config.zip_path.exists():
                raise PackageBuildError(f"--skip-build given but {config.zip_path} is missing")
            logger.info("Reusing existing package %s", config.zip_path)
        else:
            _run_step(summary, "package", lambda: build_package(config))

        _banner("STEP 2/4: IAM role configuration")
        summary.role_arn = _run_step(summary, "iam-role", lambda: ensure_role(config, sleep))

        _banner("STEP 3/4: Lambda function deployment")
        role_arn = summary.role_arn
        _run_step(summary, "function", lambda: deploy_function(config, role_arn, sleep))

        _banner("STEP 4/4: Function URL configuration")
        summary.function_url = _run_step(
            summary, "function-url", lambda: ensure_function_url(config)
        )

        if verify:
            function_url = summary.function_url
            _run_step(summary, "verify", lambda: verify_login(function_url))
        summary.status = "passed"
    except Exception as exc:
        summary.status = "failed"
        summary.error = f"{exc.__class__.__name__}: {exc}"
        raise
    finally:
        summary.duration_seconds = round(time.monotonic() - started, 2)

    return summary


def log_success(summary: DeploymentSummary) -> None:
    _banner("DEPLOYMENT SUCCESSFUL")
    logger.info("Function name: %s", summary.function_name)
    logger.info("Region: %s", summary.region)
    logger.info("Profile: %s", summary.profile)
    logger.info("Duration: %.2f seconds", summary.duration_seconds)
    logger.info("Function URL: %s", summary.function_url)
    if summary.function_url:
        logger.info(
            "Test: curl -X POST %s -H \"Content-Type: application/json\" -d '%s'",
            login_url(summary.function_url),
            json.dumps(SMOKE_TEST_BODY),
        )


def log_failure(config: DeployConfig, exc: Exception, duration_seconds: float) -> None:
    _banner("DEPLOYMENT FAILED", logging.ERROR)
    logger.error("Function name: %s", config.function_name)
    logger.error("Region: %s", config.region)
    logger.error("Profile: %s", config.profile_label)
    logger.error("Duration: %.2f seconds", duration_seconds)
    logger.error("Error: %s", exc)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Deploy the tickets backend to AWS Lambda")
    parser.add_argument(
        "--function-name",
        help=f"Lambda function name (default: {DEFAULT_FUNCTION_NAME})",
    )
    parser.add_argument("--region", help="AWS region (default: $AWS_REGION or sa-east-1)")
    parser.add_argument("--profile", help="AWS CLI profile (default: $AWS_PROFILE)")
    parser.add_argument(
        "--architecture",
        choices=sorted(PLATFORM_TAGS),
        help=f"Lambda architecture (default: {DEFAULT_ARCHITECTURE})",
    )
    parser.add_argument(
        "--role-wait",
        type=float,
        help=f"Seconds to wait for IAM propagation (default: {DEFAULT_ROLE_WAIT_SECONDS})",
    )
    parser.add_argument(
        "--ready-wait",
        type=float,
        help=f"Seconds to wait for function readiness (default: {DEFAULT_READY_WAIT_SECONDS})",
    )
    parser.add_argument(
        "--skip-build",
        action="store_true",
        help="Reuse an existing lambda-deployment.zip instead of rebuilding",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="POST a sample login after deploy and require HTTP 200",
    )
    parser.add_argument("--report-file", type=Path, help="Write a JSON deployment report here")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""
    args = parse_args(argv)
    config = config_from_env(
        function_name=args.function_name,
        region=args.region,
        profile=args.profile,
        architecture=args.architecture,
        role_wait_seconds=args.role_wait,
        ready_wait_seconds=args.ready_wait,
    )

    _banner("Starting deployment to AWS Lambda")
    logger.info("Function name: %s", config.function_name)
    logger.info("Region: %s", config.region)
    logger.info("AWS profile: %s", config.profile_label)
    logger.info("Timestamp: %s", utc_now_iso())

    summary = new_summary(config)
    started = time.monotonic()
    try:
        run_deploy(config, skip_build=args.skip_build, verify=args.verify, summary=summary)
    except Exception as exc:
        log_failure(config, exc, time.monotonic() - started)
        try:
            cleanup_package(config.zip_path, staging_dir())
        except OSError as cleanup_exc:
            logger.warning("Could not clean up deployment package: %s", cleanup_exc)
        return 1
    finally:
        if args.report_file:
            write_report(args.report_file, summary)

    log_success(summary)
    cleanup_package(config.zip_path, staging_dir())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
