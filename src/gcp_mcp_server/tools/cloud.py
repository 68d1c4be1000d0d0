"""Cloud Storage, Compute Engine, Cloud Run, project listing and gcloud passthrough."""

import logging
import shlex
from typing import List, Literal, Optional

import anyio
from google.api_core import exceptions as gcp_exceptions
from pydantic import BaseModel, Field

from ..content import text_result
from ..errors import ResourceNotFoundError, ToolValidationError
from ..registry import registry
from .common import ProjectParams

logger = logging.getLogger(__name__)

MAX_READ_BYTES = 10 * 1024 * 1024
MAX_OUTPUT_CHARS = 5000
ZONE_SUGGESTIONS = 10
BLOCKED_COMMAND_TOKENS = {"rm", "delete", "destroy", "iam"}


def truncate(text: str, limit: int = MAX_OUTPUT_CHARS):
    if len(text) > limit:
        return text[:limit] + "...", True
    return text, False


@registry.tool("gcs_list_buckets", "List all Cloud Storage buckets", ProjectParams)
async def gcs_list_buckets(ctx, params: ProjectParams):
    project_id = await ctx.project_id(params.projectId)
    buckets = list(ctx.clients.storage.list_buckets(project=project_id))
    if not buckets:
        return text_result(f"No storage buckets found in project {project_id}")

    lines = [f"- gs://{b.name} ({b.location}, {b.storage_class})" for b in buckets]
    return text_result(f"Found {len(buckets)} buckets:\n" + "\n".join(lines))


class ListFilesParams(BaseModel):
    bucketName: str = Field(..., min_length=1, description="Bucket name")
    prefix: Optional[str] = Field(None, description="File prefix/folder path")
    limit: int = Field(100, ge=1, description="Maximum number of files to return")


@registry.tool("gcs_list_files", "List files in a Cloud Storage bucket", ListFilesParams)
async def gcs_list_files(ctx, params: ListFilesParams):
    bucket = ctx.clients.storage.bucket(params.bucketName)
    blobs = list(bucket.list_blobs(prefix=params.prefix, max_results=params.limit))
    if not blobs:
        location = params.bucketName + (f"/{params.prefix}" if params.prefix else "")
        return text_result(f"No files found in gs://{location}")

    lines = [
        f"- {blob.name} ({int(blob.size or 0) / 1024:.2f}KB, {blob.content_type or 'unknown type'})"
        for blob in blobs
    ]
    return text_result(f"Found {len(blobs)} files in gs://{params.bucketName}:\n" + "\n".join(lines))


class ReadFileParams(BaseModel):
    bucketName: str = Field(..., min_length=1, description="Bucket name")
    fileName: str = Field(..., min_length=1, description="File path in bucket")


@registry.tool("gcs_read_file", "Read a file from Cloud Storage (max 10MB)", ReadFileParams)
async def gcs_read_file(ctx, params: ReadFileParams):
    blob = ctx.clients.storage.bucket(params.bucketName).get_blob(params.fileName)
    if blob is None:
        raise ResourceNotFoundError(f"File gs://{params.bucketName}/{params.fileName} does not exist")

    size = int(blob.size or 0)
    if size > MAX_READ_BYTES:
        return text_result(
            f"File {params.fileName} is too large ({size / 1024 / 1024:.2f}MB). "
            f"Maximum size for reading is 10MB."
        )

    text, truncated = truncate(blob.download_as_bytes().decode("utf-8", errors="replace"))
    return text_result(
        f"Contents of gs://{params.bucketName}/{params.fileName}{' (truncated)' if truncated else ''}:\n"
        f"```\n{text}\n```"
    )


class ListInstancesParams(ProjectParams):
    zone: Optional[str] = Field(None, description="Zone, e.g. 'us-central1-a'")


def external_ip(instance) -> str:
    for interface in instance.network_interfaces:
        for access in interface.access_configs:
            if access.nat_i_p:
                return access.nat_i_p
    return "none"


@registry.tool("compute_list_instances", "List Compute Engine instances in a zone", ListInstancesParams)
async def compute_list_instances(ctx, params: ListInstancesParams):
    project_id = await ctx.project_id(params.projectId)
    if not params.zone:
        zones = [z.name for z in ctx.clients.zones.list(project=project_id) if z.status == "UP"]
        listing = "\n".join(f"- {name}" for name in zones[:ZONE_SUGGESTIONS])
        return text_result(
            f"Please specify a zone. Available zones:\n{listing}\n\nExample: use zone \"us-central1-a\""
        )

    instances = list(ctx.clients.instances.list(project=project_id, zone=params.zone))
    if not instances:
        return text_result(f"No instances found in zone {params.zone}")

    lines = [
        f"- {i.name} ({i.status}, {i.machine_type.rsplit('/', 1)[-1]}, IP: {external_ip(i)})"
        for i in instances
    ]
    return text_result(f"Instances in {params.zone}:\n" + "\n".join(lines))


class InstanceActionParams(ProjectParams):
    instanceName: str = Field(..., min_length=1, description="Instance name")
    zone: str = Field(..., min_length=1, description="Instance zone")
    action: Literal["start", "stop", "reset"] = Field(..., description="Action to perform")


@registry.tool(
    "compute_instance_action",
    "Start, stop, or reset a Compute Engine instance",
    InstanceActionParams,
)
async def compute_instance_action(ctx, params: InstanceActionParams):
    project_id = await ctx.project_id(params.projectId)
    method = getattr(ctx.clients.instances, params.action)
    method(project=project_id, zone=params.zone, instance=params.instanceName)
    logger.info(f"Requested {params.action} of {params.instanceName} in {params.zone}")
    return text_result(
        f"Successfully initiated {params.action} operation for instance "
        f"{params.instanceName} in zone {params.zone}"
    )


class ListServicesParams(ProjectParams):
    region: str = Field(..., min_length=1, description="Region, e.g. 'us-central1'")


def service_ready(service) -> bool:
    condition = service.terminal_condition
    return condition is not None and condition.state.name == "CONDITION_SUCCEEDED"


@registry.tool("run_list_services", "List Cloud Run services in a region", ListServicesParams)
async def run_list_services(ctx, params: ListServicesParams):
    project_id = await ctx.project_id(params.projectId)
    parent = f"projects/{project_id}/locations/{params.region}"
    try:
        services = list(ctx.clients.run_services.list_services(parent=parent))
    except gcp_exceptions.InvalidArgument:
        return text_result(
            f"Invalid region: {params.region}. "
            "Common regions: us-central1, us-east1, europe-west1, asia-northeast1"
        )
    if not services:
        return text_result(f"No Cloud Run services found in {params.region}")

    lines = [
        f"- {s.name.rsplit('/', 1)[-1]} {'✓' if service_ready(s) else '✗'} {s.uri or 'No URL'}"
        for s in services
    ]
    return text_result(f"Cloud Run services in {params.region}:\n" + "\n".join(lines))


class NoParams(BaseModel):
    pass


@registry.tool("list_projects", "List all accessible GCP projects", NoParams)
async def list_projects(ctx, params: NoParams):
    projects = list(ctx.clients.projects.search_projects(query="state:ACTIVE"))
    if not projects:
        return text_result("No accessible projects found")

    lines = [f"- {p.project_id} \"{p.display_name}\" ({p.state.name})" for p in projects]
    return text_result("Accessible GCP Projects:\n" + "\n".join(lines))


class GcloudParams(BaseModel):
    command: str = Field(..., min_length=1, description="Full gcloud command (without 'gcloud' prefix)")


def is_blocked(tokens: List[str]) -> bool:
    return any(part in BLOCKED_COMMAND_TOKENS for token in tokens for part in token.lower().split("-"))


@registry.tool(
    "gcloud_command",
    "Execute a gcloud command (destructive and IAM commands are blocked)",
    GcloudParams,
)
async def gcloud_command(ctx, params: GcloudParams):
    try:
        tokens = shlex.split(params.command)
    except ValueError as error:
        raise ToolValidationError(f"Could not parse command: {error}", error)
    if tokens and tokens[0] == "gcloud":
        tokens = tokens[1:]
    if is_blocked(tokens):
        logger.warning(f"Blocked gcloud command: {params.command}")
        return text_result("This command has been blocked for safety. Please use specific MCP tools instead.")

    logger.info(f"Running gcloud {' '.join(tokens)}")
    try:
        result = await anyio.run_process(["gcloud", *tokens], check=False)
    except OSError as error:
        return text_result(f"Command failed: {error}", is_error=True)

    stdout = result.stdout.decode(errors="replace")
    stderr = result.stderr.decode(errors="replace")
    if result.returncode != 0:
        return text_result(f"Command failed: {stderr.strip() or f'exit status {result.returncode}'}", is_error=True)

    output, truncated = truncate(stdout or stderr or "Command completed with no output")
    return text_result(f"```\n{output}\n```" + ("\n(Output truncated)" if truncated else ""))


class EchoParams(BaseModel):
    message: str = Field(..., description="Message to echo")


@registry.tool("echo", "Echo a message (test tool)", EchoParams)
async def echo(ctx, params: EchoParams):
    return text_result(f"Echo: {params.message}")
