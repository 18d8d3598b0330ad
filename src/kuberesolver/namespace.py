"""Namespace of the running pod."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

KUBERNETES_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
DEFAULT_NAMESPACE = "default"


def current_namespace(
    namespace_file: str | Path = KUBERNETES_NAMESPACE_FILE,
    default: str = DEFAULT_NAMESPACE,
) -> str:
    """Read the service account namespace, falling back to ``default``."""
    try:
        namespace = Path(namespace_file).read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.debug("Namespace file %s unreadable (%s), using %s", namespace_file, e, default)
        return default
    return namespace or default
