"""User settings schema and the secret-material boundary filter."""

import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, validator

from kaspa_aio.models.selection import IssueCode, ValidationIssue
from kaspa_aio.utils.files import ENV_KEY_PATTERN


MIN_PORT = 1024
MAX_PORT = 65535

SHELL_META = re.compile(r"[;&|$`<>(){}\[\]*?!~'\"\\\s]")
KASPA_ADDRESS = re.compile(r"^(kaspa|kaspatest):[a-z0-9]{61,63}$")
NODE_ADDRESS = re.compile(r"^(grpc://)?[A-Za-z0-9.\-]+:\d{1,5}$")

PRIVATE_KEY = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")
EXTENDED_KEY = re.compile(r"^(xprv|kprv|ktrv|tprv)[1-9A-HJ-NP-Za-km-z]{100,}$")
MNEMONIC = re.compile(r"^[a-z]+(\s+[a-z]+){11}$|^[a-z]+(\s+[a-z]+){23}$")
SECRET_KEY_NAMES = re.compile(r"(PRIVATE_KEY|SEED|MNEMONIC|WALLET_PASSWORD|WALLET_FILE)")


def _port():
    return Field(None, ge=MIN_PORT, le=MAX_PORT)


class StackSettings(BaseModel):
    """Every configuration key a user may set. Unknown keys are rejected."""
    KASPA_NETWORK: Optional[Literal["mainnet", "testnet"]] = None
    PUBLIC_NODE: Optional[bool] = None
    KASPA_DATA_DIR: Optional[str] = None
    KASPA_ARCHIVE_DATA_DIR: Optional[str] = None

    KASPA_NODE_RPC_PORT: Optional[int] = _port()
    KASPA_NODE_P2P_PORT: Optional[int] = _port()
    KASPA_NODE_WRPC_BORSH_PORT: Optional[int] = _port()
    KASIA_APP_PORT: Optional[int] = _port()
    K_SOCIAL_APP_PORT: Optional[int] = _port()
    KASPA_EXPLORER_PORT: Optional[int] = _port()
    SIMPLY_KASPA_INDEXER_PORT: Optional[int] = _port()
    SIMPLY_KASPA_DB_PORT: Optional[int] = _port()
    KASIA_INDEXER_PORT: Optional[int] = _port()
    K_INDEXER_PORT: Optional[int] = _port()
    K_SOCIAL_DB_PORT: Optional[int] = _port()
    KASPA_STRATUM_PORT: Optional[int] = _port()

    KASIA_INDEXER_URL: Optional[str] = None
    K_INDEXER_URL: Optional[str] = None
    KASPA_NODE_WBORSH_URL: Optional[str] = None
    KASPA_NODE_RPC_URL: Optional[str] = None

    SIMPLY_KASPA_DB_PASSWORD: Optional[str] = Field(None, min_length=12)
    K_SOCIAL_DB_PASSWORD: Optional[str] = Field(None, min_length=12)

    MINING_ADDRESS: Optional[str] = None

    class Config:
        """Pydantic config."""
        extra = "forbid"

    @validator("KASPA_DATA_DIR", "KASPA_ARCHIVE_DATA_DIR")
    def validate_directory(cls, v):
        """Absolute container paths without shell metacharacters."""
        if v is None:
            return v
        if not v.startswith("/"):
            raise ValueError("Must be an absolute path")
        if SHELL_META.search(v):
            raise ValueError("Must not contain shell metacharacters or whitespace")
        return v

    @validator("KASIA_INDEXER_URL", "K_INDEXER_URL")
    def validate_http_url(cls, v):
        if v is not None and not re.match(r"^https?://\S+$", v):
            raise ValueError("Must be an http:// or https:// URL")
        return v

    @validator("KASPA_NODE_WBORSH_URL")
    def validate_ws_url(cls, v):
        if v is not None and not re.match(r"^wss?://\S+$", v):
            raise ValueError("Must be a ws:// or wss:// URL")
        return v

    @validator("KASPA_NODE_RPC_URL")
    def validate_node_address(cls, v):
        if v is not None and not NODE_ADDRESS.match(v):
            raise ValueError("Must be host:port")
        return v

    @validator("SIMPLY_KASPA_DB_PASSWORD", "K_SOCIAL_DB_PASSWORD")
    def validate_password(cls, v):
        if v is not None and re.search(r"[\s'\"`$\\]", v):
            raise ValueError("Must not contain whitespace, quotes, backslashes or '$'")
        return v

    @validator("MINING_ADDRESS")
    def validate_mining_address(cls, v):
        if v and not KASPA_ADDRESS.match(v):
            raise ValueError("Must be a kaspa: or kaspatest: address")
        return v


PORT_KEYS = {
    name for name, field in StackSettings.model_fields.items() if name.endswith("_PORT")
}


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _issue_from_error(error: Dict[str, Any]) -> ValidationIssue:
    field = ".".join(str(part) for part in error.get("loc", ())) or None
    message = error.get("msg", "Invalid value")
    error_type = error.get("type", "")

    if error_type == "extra_forbidden":
        return ValidationIssue(
            code=IssueCode.SCHEMA_VIOLATION,
            field=field,
            message=f"Unknown configuration key '{field}'",
            remediation=f"Remove '{field}' from the settings",
        )
    if field in PORT_KEYS and error_type in ("greater_than_equal", "less_than_equal"):
        return ValidationIssue(
            code=IssueCode.PORT_RANGE,
            field=field,
            message=f"Port must be between {MIN_PORT} and {MAX_PORT}",
            remediation=f"Choose a port in {MIN_PORT}-{MAX_PORT} for {field}",
        )
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return ValidationIssue(code=IssueCode.SCHEMA_VIOLATION, field=field, message=message)


def validate_settings(settings: Dict[str, Any]) -> tuple:
    """Validate user settings.

    Returns ``(values, issues)``: the normalized string values of the keys the
    user set, and structured field errors. ``values`` is empty when there are
    errors.
    """
    issues: List[ValidationIssue] = []
    for key in settings:
        if not ENV_KEY_PATTERN.match(str(key)):
            issues.append(
                ValidationIssue(
                    code=IssueCode.SCHEMA_VIOLATION,
                    field=str(key),
                    message="Configuration keys must match ^[A-Z_][A-Z0-9_]*$",
                )
            )
    if issues:
        return {}, issues

    try:
        model = StackSettings(**settings)
    except ValidationError as e:
        return {}, [_issue_from_error(error) for error in e.errors()]

    values = model.model_dump(exclude_unset=True, exclude_none=True)
    return {key: _format_value(value) for key, value in values.items()}, []


def find_secret_material(settings: Dict[str, Any]) -> List[ValidationIssue]:
    """Reject anything that looks like wallet key material.

    Wallet keys and seed phrases never belong in the installation's
    configuration.
    """
    issues = []
    for key, value in settings.items():
        reason = None
        if SECRET_KEY_NAMES.search(str(key)):
            reason = "Wallet secrets cannot be stored in the configuration"
        elif isinstance(value, str):
            candidate = value.strip()
            if PRIVATE_KEY.match(candidate) or EXTENDED_KEY.match(candidate):
                reason = "Value looks like a private key"
            elif MNEMONIC.match(candidate):
                reason = "Value looks like a seed phrase"
        if reason:
            issues.append(
                ValidationIssue(
                    code=IssueCode.SECRET_MATERIAL,
                    field=str(key),
                    message=reason,
                    remediation="Keep wallet keys and seed phrases in your wallet, not in the installer",
                )
            )
    return issues
