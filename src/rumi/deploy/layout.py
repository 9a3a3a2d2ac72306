"""Remote filesystem layout for deployments."""

from __future__ import annotations

from dataclasses import dataclass

from rumi.models.deployment import Deployment, DeploymentKind
from rumi.models.settings import PathSettings

GENESIS_FILENAME = "genesis.json"
PASSWORD_FILENAME = "password.sec"


@dataclass(frozen=True)
class RemoteLayout:
    """Maps a deployment to the remote paths it owns."""

    paths: PathSettings

    def artifact_dir(self, deployment: Deployment) -> str:
        """Directory holding the deployed artifact; this is what backups capture."""
        if deployment.kind == DeploymentKind.WEBSITE:
            return f"{self.paths.web_root}/{deployment.domain}"
        return f"{self.paths.app_root}/{deployment.name}"

    def binary_path(self, deployment: Deployment) -> str:
        """Server binary path, named after the deployment rather than the local file."""
        return f"{self.artifact_dir(deployment)}/{deployment.name}"

    def genesis_path(self, deployment: Deployment) -> str:
        return f"{self.artifact_dir(deployment)}/{GENESIS_FILENAME}"

    def password_path(self, deployment: Deployment) -> str:
        return f"{self.artifact_dir(deployment)}/{PASSWORD_FILENAME}"

    def data_dir(self, deployment: Deployment) -> str:
        """Chain data directory; lives outside the artifact dir and is never backed up."""
        return f"{self.paths.data_root}/{deployment.name}/data"

    def unit_name(self, deployment: Deployment) -> str:
        return f"rumi-{deployment.name}.service"

    def unit_path(self, deployment: Deployment) -> str:
        return f"{self.paths.systemd_dir}/{self.unit_name(deployment)}"

    def site_config_path(self, deployment: Deployment) -> str:
        return f"{self.paths.nginx_sites_available}/rumi-{deployment.name}.conf"

    def site_link_path(self, deployment: Deployment) -> str:
        return f"{self.paths.nginx_sites_enabled}/rumi-{deployment.name}.conf"

    def certificate_dir(self, deployment: Deployment) -> str:
        return f"{self.paths.certificate_root}/{deployment.domain}"

    def fullchain_path(self, deployment: Deployment) -> str:
        return f"{self.certificate_dir(deployment)}/fullchain.pem"

    def privkey_path(self, deployment: Deployment) -> str:
        return f"{self.certificate_dir(deployment)}/privkey.pem"
