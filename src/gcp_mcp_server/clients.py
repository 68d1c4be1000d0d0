import json
import logging
import os
from typing import Any, Dict, Optional

import anyio
from google.cloud import bigquery

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class GCPClients:
    """Lazily constructed Google Cloud clients sharing one set of credentials."""

    def __init__(self, config):
        self.config = config
        self._credentials = None
        self._credentials_loaded = False
        self._bigquery = None
        self._storage = None
        self._instances = None
        self._zones = None
        self._run_services = None
        self._projects = None
        self._gcloud_project: Optional[str] = None

    @property
    def credentials(self):
        """Service account credentials from the key file or inline JSON, or None for ADC."""
        if self._credentials_loaded:
            return self._credentials

        if self.config.key_filename:
            logger.info(f"Using service account key file: {self.config.key_filename}")
            from google.oauth2 import service_account

            self._credentials = service_account.Credentials.from_service_account_file(
                self.config.key_filename
            )
        elif self.config.credentials_json:
            logger.info('Using service account credentials from environment variable')
            from google.oauth2 import service_account

            credentials_data = json.loads(self.config.credentials_json)
            # Normalize private_key newlines if they are escaped
            if isinstance(credentials_data, dict) and isinstance(credentials_data.get('private_key'), str):
                credentials_data['private_key'] = credentials_data['private_key'].replace('\\n', '\n')
            self._credentials = service_account.Credentials.from_service_account_info(credentials_data)
        else:
            logger.info('Using default Google Cloud authentication')
        self._credentials_loaded = True
        return self._credentials

    def _client_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        if self.credentials is not None:
            kwargs['credentials'] = self.credentials
        return kwargs

    @property
    def bigquery(self) -> bigquery.Client:
        if self._bigquery is None:
            kwargs = self._client_kwargs()
            if self.config.project_id:
                kwargs['project'] = self.config.project_id
            logger.info(f"Initializing BigQuery with project ID: {self.config.project_id} and location: {self.config.location}")
            self._bigquery = bigquery.Client(**kwargs)
        return self._bigquery

    @property
    def storage(self):
        if self._storage is None:
            from google.cloud import storage

            kwargs = self._client_kwargs()
            if self.config.project_id:
                kwargs['project'] = self.config.project_id
            self._storage = storage.Client(**kwargs)
        return self._storage

    @property
    def instances(self):
        if self._instances is None:
            from google.cloud.compute_v1 import InstancesClient

            self._instances = InstancesClient(**self._client_kwargs())
        return self._instances

    @property
    def zones(self):
        if self._zones is None:
            from google.cloud.compute_v1 import ZonesClient

            self._zones = ZonesClient(**self._client_kwargs())
        return self._zones

    @property
    def run_services(self):
        if self._run_services is None:
            from google.cloud import run_v2

            self._run_services = run_v2.ServicesClient(**self._client_kwargs())
        return self._run_services

    @property
    def projects(self):
        if self._projects is None:
            from google.cloud import resourcemanager_v3

            self._projects = resourcemanager_v3.ProjectsClient(**self._client_kwargs())
        return self._projects

    async def resolve_project_id(self, provided: Optional[str] = None) -> str:
        """Pick the project a tool call runs against.

        Order: explicit argument, configured project, ``GOOGLE_CLOUD_PROJECT``,
        ``GCP_PROJECT``, then ``gcloud config get-value project``.
        """
        for candidate in (
            provided,
            self.config.project_id,
            os.getenv('GOOGLE_CLOUD_PROJECT'),
            os.getenv('GCP_PROJECT'),
        ):
            if candidate:
                return candidate

        if self._gcloud_project is None:
            self._gcloud_project = await gcloud_default_project()
        if self._gcloud_project:
            return self._gcloud_project

        raise ConfigurationError(
            'No project ID found. Set GOOGLE_CLOUD_PROJECT or run: gcloud config set project PROJECT_ID'
        )


async def gcloud_default_project() -> str:
    """Return the gcloud CLI's default project, or an empty string when unavailable."""
    try:
        result = await anyio.run_process(['gcloud', 'config', 'get-value', 'project'], check=False)
    except OSError as error:
        logger.debug(f'gcloud not available: {error}')
        return ''
    if result.returncode != 0:
        logger.debug(f'gcloud config get-value project failed: {result.stderr.decode(errors="replace")}')
        return ''
    project = result.stdout.decode().strip()
    if project == '(unset)':
        return ''
    return project
