"""Generation of s6 supervision trees."""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Mapping

from .fsbase import FullFS

logger = logging.getLogger(__name__)

Services = Mapping[str, str]

_RUN_HEADER = "#!/bin/execlineb\n"


def _service_dir(service: str) -> str:
    return posixpath.normpath(posixpath.join("sv", service))


class S6Context:
    """Writes s6 service definitions into a filesystem."""

    def __init__(self, fs: FullFS) -> None:
        self.fs = fs

    def write_supervision_tree(self, services: Services) -> None:
        """Create ``sv/<service>/run`` for every service and its command."""
        logger.debug("generating supervision tree")
        for service, command in services.items():
            svcdir = _service_dir(service)
            try:
                self.fs.mkdir_all(svcdir, 0o777)
            except OSError as err:
                raise OSError(
                    err.errno, f"could not make supervision directory: {err}"
                ) from err

            run_script = f"{_RUN_HEADER}{command}\n".encode("utf-8")
            try:
                self.fs.write_file(posixpath.join(svcdir, "run"), run_script, 0o755)
            except OSError as err:
                raise OSError(err.errno, f"could not write runfile: {err}") from err