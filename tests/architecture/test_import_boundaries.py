"""
Import-boundary enforcement.

1. Kernel isolation   -- lifecycle_kernel/** may not import the config,
                         services, batch or CLI layers.
2. Domain purity      -- lifecycle_kernel/domain/** may not import the DB,
                         models, services or selectors, nor SQLAlchemy.
3. Config entrypoint  -- outside lifecycle_config, only the package
                         entrypoint may be imported.
4. Batch direction    -- lifecycle_services/** may not import lifecycle_batch
                         or lifecycle_cli.

All scanning is done via AST; these tests are read-only.
"""

import ast
import glob
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[str]:
    return sorted(glob.glob(str(ROOT / package / "**" / "*.py"), recursive=True))


def _extract_imports(filepath: str) -> list[tuple[int, str]]:
    tree = ast.parse(Path(filepath).read_text(), filename=filepath)
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            if _matches_any(module, forbidden):
                found.append(f"{Path(path).relative_to(ROOT)}:{lineno} imports {module}")
    return found


class TestKernelIsolation:
    def test_kernel_does_not_import_outer_layers(self):
        forbidden = ("lifecycle_config", "lifecycle_services", "lifecycle_batch", "lifecycle_cli")
        assert _violations("lifecycle_kernel", forbidden) == []

    def test_package_files_found(self):
        assert _python_files("lifecycle_kernel")


class TestDomainPurity:
    def test_domain_has_no_persistence_imports(self):
        forbidden = (
            "sqlalchemy",
            "lifecycle_kernel.db",
            "lifecycle_kernel.models",
            "lifecycle_kernel.services",
            "lifecycle_kernel.selectors",
        )
        assert _violations("lifecycle_kernel/domain", forbidden) == []


class TestConfigEntrypoint:
    def test_only_package_entrypoint_imported(self):
        forbidden = ("lifecycle_config.loader",)
        found = []
        for package in ("lifecycle_kernel", "lifecycle_services", "lifecycle_batch", "lifecycle_cli"):
            found.extend(_violations(package, forbidden))
        assert found == []


class TestServiceDirection:
    def test_services_do_not_import_batch_or_cli(self):
        assert _violations("lifecycle_services", ("lifecycle_batch", "lifecycle_cli")) == []
