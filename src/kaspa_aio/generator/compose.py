"""Deterministic docker compose and env file generation."""

import logging
import secrets
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from kaspa_aio.catalog import ProfileCatalog, get_default_catalog
from kaspa_aio.errors import ValidationFailed
from kaspa_aio.generator.settings import find_secret_material, validate_settings
from kaspa_aio.models.profile import ServiceSpec
from kaspa_aio.models.selection import IssueCode, ValidationIssue
from kaspa_aio.utils.files import ENV_KEY_PATTERN, dump_yaml, format_env_value
from kaspa_aio.utils.templates import render_template


logger = logging.getLogger(__name__)

NETWORK_NAME = "kaspa-network"
PROFILE_LABEL = "kaspa-aio.profiles"
SECRET_BYTES = 32
MIN_SECRET_LENGTH = 32

ENV_TEMPLATE = """\
# Kaspa All-in-One configuration
# Profiles: {{ profiles|join(', ') }}
{% for title, items in groups %}

# {{ title }}
{% for key, value in items %}
{{ key }}={{ value }}
{% endfor %}
{% endfor %}
"""


def generate_secret() -> str:
    """Cryptographically secure random secret of at least MIN_SECRET_LENGTH characters."""
    return secrets.token_urlsafe(SECRET_BYTES)


class GeneratedConfig(BaseModel):
    """Compose document and env file for a resolved selection."""
    profiles: List[str]
    services: List[str] = Field(default_factory=list)
    compose_document: Dict[str, Any] = Field(default_factory=dict)
    compose_text: str = ""
    env_map: Dict[str, str] = Field(default_factory=dict)
    env_text: str = ""
    warnings: List[ValidationIssue] = Field(default_factory=list)
    generated_secrets: List[str] = Field(default_factory=list)


class ConfigGenerator:
    """Turns a resolved profile set plus user settings into configuration files.

    The output depends only on the inputs: the same profiles and settings
    produce byte-identical documents. Secrets are generated only for keys the
    caller did not supply.
    """

    def __init__(
        self,
        catalog: Optional[ProfileCatalog] = None,
        secret_factory: Callable[[], str] = generate_secret,
    ):
        self.catalog = catalog or get_default_catalog()
        self.secret_factory = secret_factory

    def generate(
        self,
        resolved_profiles: Iterable[str],
        user_settings: Optional[Dict[str, Any]] = None,
    ) -> GeneratedConfig:
        """Generate compose document and env map.

        Raises:
            ValidationFailed: unknown profiles, secret material, or invalid settings
        """
        ids, _ = self.catalog.migrate(resolved_profiles)
        unknown = [pid for pid in ids if pid not in self.catalog]
        if unknown:
            raise ValidationFailed(
                f"Unknown profiles: {', '.join(unknown)}",
                issues=[
                    ValidationIssue(code=IssueCode.INVALID_PROFILE, message=f"Unknown profile '{pid}'", profiles=[pid])
                    for pid in unknown
                ],
            )
        profiles = self.catalog.canonical_order(ids)
        settings = dict(user_settings or {})

        secret_issues = find_secret_material(settings)
        if secret_issues:
            raise ValidationFailed("Settings contain wallet secret material", issues=secret_issues)

        settings, warnings = self._drop_unused(settings, profiles)
        generated = self._fill_secrets(settings, profiles)

        values, issues = validate_settings(settings)
        issues.extend(self._missing_required(values, profiles))
        if issues:
            raise ValidationFailed("Invalid configuration settings", issues=issues)

        env_map = self._build_env(profiles, values)
        services = self.catalog.services_for(profiles)
        port_issues = self._host_port_conflicts(services, env_map, values)
        if port_issues:
            raise ValidationFailed("Host ports are assigned more than once", issues=port_issues)
        document = self._build_document(services, env_map)

        logger.debug(f"Generated configuration for {profiles}: {len(services)} services")
        return GeneratedConfig(
            profiles=profiles,
            services=[s.name for s in services],
            compose_document=document,
            compose_text=dump_yaml(document),
            env_map=env_map,
            env_text=self.render_env(profiles, env_map),
            warnings=warnings,
            generated_secrets=generated,
        )

    def relevant_keys(self, profiles: List[str]) -> set:
        keys = set(self.catalog.global_settings)
        for profile_id in profiles:
            keys.update(self.catalog.get(profile_id).setting_keys)
        return keys

    def _drop_unused(self, settings: Dict[str, Any], profiles: List[str]) -> tuple:
        """Drop known keys that belong only to unselected profiles."""
        relevant = self.relevant_keys(profiles)
        known = self.catalog.known_settings
        kept: Dict[str, Any] = {}
        warnings: List[ValidationIssue] = []
        for key, value in settings.items():
            if key in known and key not in relevant:
                warnings.append(
                    ValidationIssue(
                        code=IssueCode.UNUSED_SETTING,
                        severity="warning",
                        field=key,
                        message=f"'{key}' is not used by the selected profiles and was ignored",
                    )
                )
                continue
            kept[key] = value
        return kept, warnings

    def _fill_secrets(self, settings: Dict[str, Any], profiles: List[str]) -> List[str]:
        generated = []
        for profile_id in profiles:
            for key in self.catalog.get(profile_id).secrets:
                if not settings.get(key):
                    settings[key] = self.secret_factory()
                    generated.append(key)
        if generated:
            logger.info(f"Generated secure values for {', '.join(generated)}")
        return generated

    def _missing_required(self, values: Dict[str, str], profiles: List[str]) -> List[ValidationIssue]:
        issues = []
        for profile_id in profiles:
            for key in self.catalog.get(profile_id).required_settings:
                if not values.get(key):
                    issues.append(
                        ValidationIssue(
                            code=IssueCode.SCHEMA_VIOLATION,
                            field=key,
                            message=f"{key} is required by '{profile_id}'",
                            profiles=[profile_id],
                        )
                    )
        return issues

    def _build_env(self, profiles: List[str], values: Dict[str, str]) -> Dict[str, str]:
        env: Dict[str, str] = dict(self.catalog.global_settings)
        for profile_id in profiles:
            for key, default in self.catalog.get(profile_id).env_defaults.items():
                env.setdefault(key, default)
        env.update(values)
        env["COMPOSE_PROFILES"] = ",".join(profiles)

        bad = [key for key in env if not ENV_KEY_PATTERN.match(key)]
        if bad:
            raise ValidationFailed(
                "Invalid environment keys",
                issues=[
                    ValidationIssue(code=IssueCode.SCHEMA_VIOLATION, field=key, message="Invalid environment key")
                    for key in bad
                ],
            )
        return {key: env[key] for key in sorted(env)}

    def _host_port_conflicts(
        self, services: List[ServiceSpec], env_map: Dict[str, str], overrides: Dict[str, str]
    ) -> List[ValidationIssue]:
        """Host ports bound by more than one service once settings are applied."""
        bound: Dict[str, List[tuple]] = {}
        for service in services:
            for binding in service.ports:
                port = env_map[binding.setting]
                bound.setdefault(f"{port}/{binding.protocol}", []).append((service, binding.setting))

        issues = []
        for key, users in bound.items():
            if len(users) < 2:
                continue
            port = key.split("/", 1)[0]
            names = [service.name for service, _ in users]
            settings = sorted({setting for _, setting in users})
            overridden = [setting for setting in settings if setting in overrides]
            issues.append(
                ValidationIssue(
                    code=IssueCode.PORT_CONFLICT,
                    field=(overridden or settings)[0],
                    message=f"Host port {port} is used by {', '.join(names)}",
                    profiles=sorted({pid for service, _ in users for pid in service.owner_profiles}),
                    port=int(port),
                    remediation=f"Give {' or '.join(settings)} a different port",
                )
            )
        return issues

    def _build_document(self, services: List[ServiceSpec], env_map: Dict[str, str]) -> Dict[str, Any]:
        included = {service.name for service in services}
        blocks: Dict[str, Any] = {}
        volumes: set = set()

        for service in services:
            blocks[service.name] = self.service_block(service, env_map, included)
            volumes.update(service.named_volumes)

        document: Dict[str, Any] = {"services": blocks}
        document["networks"] = {NETWORK_NAME: {"driver": "bridge"}}
        if volumes:
            document["volumes"] = {name: None for name in sorted(volumes)}
        return document

    def service_block(self, service: ServiceSpec, env_map: Dict[str, str], included: set) -> Dict[str, Any]:
        """Compose definition of one service."""
        owners = sorted(service.owner_profiles)
        block: Dict[str, Any] = {
            "container_name": service.name,
            "image": service.image,
        }
        if service.build:
            build: Dict[str, Any] = {"context": service.build.context}
            if service.build.dockerfile:
                build["dockerfile"] = service.build.dockerfile
            if service.build.args:
                build["args"] = {k: service.build.args[k] for k in sorted(service.build.args)}
            block["build"] = build
        if service.command:
            block["command"] = list(service.command)
        block["restart"] = service.restart
        block["profiles"] = owners
        block["labels"] = {PROFILE_LABEL: ",".join(owners)}

        if service.ports:
            ports = []
            for binding in service.ports:
                mapping = f"{env_map[binding.setting]}:{binding.container}"
                if binding.protocol != "tcp":
                    mapping += f"/{binding.protocol}"
                ports.append(mapping)
            block["ports"] = ports

        environment = dict(service.static_env)
        for variable, key in service.environment.items():
            environment[variable] = env_map.get(key, "")
        if environment:
            block["environment"] = {k: environment[k] for k in sorted(environment)}

        if service.volumes:
            block["volumes"] = list(service.volumes)
        depends_on = [name for name in service.depends_on if name in included]
        if depends_on:
            block["depends_on"] = depends_on
        block["networks"] = [NETWORK_NAME]
        return block

    def render_env(self, profiles: List[str], env_map: Dict[str, str]) -> str:
        """Render the env file, keys grouped under the profile that owns them."""
        emitted = set()
        groups = []

        global_keys = sorted(k for k in env_map if k in self.catalog.global_settings or k == "COMPOSE_PROFILES")
        groups.append(("global", [(k, format_env_value(env_map[k])) for k in global_keys]))
        emitted.update(global_keys)

        for profile_id in profiles:
            keys = sorted(
                k for k in self.catalog.get(profile_id).setting_keys
                if k in env_map and k not in emitted
            )
            if keys:
                groups.append((profile_id, [(k, format_env_value(env_map[k])) for k in keys]))
                emitted.update(keys)

        return render_template(ENV_TEMPLATE, profiles=profiles, groups=groups)
