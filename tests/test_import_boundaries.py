import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]


def _forbidden_imports(package_dir: Path, forbidden_prefixes: tuple[str, ...]) -> list[str]:
    offenders: list[str] = []
    for path in sorted(package_dir.rglob("*.py")):
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    if alias.name.startswith(forbidden_prefixes):
                        offenders.append(f"{path}: import {alias.name}")
            elif isinstance(node, ast.ImportFrom):
                if node.module and node.module.startswith(forbidden_prefixes):
                    offenders.append(f"{path}: from {node.module} import ...")
    return offenders


def test_taskkit_is_independent_of_the_build_tool():
    assert _forbidden_imports(REPO_ROOT / "taskkit", ("epub_build",)) == []


def test_foundation_does_not_import_higher_layers():
    forbidden = ("epub_build.framework", "epub_build.stages", "epub_build.impl", "epub_build.app")
    assert _forbidden_imports(REPO_ROOT / "epub_build" / "foundation", forbidden) == []


def test_framework_does_not_import_stages_impl_or_app():
    forbidden = ("epub_build.stages", "epub_build.impl", "epub_build.app", "epub_build.cli")
    assert _forbidden_imports(REPO_ROOT / "epub_build" / "framework", forbidden) == []


def test_stages_do_not_import_impl_or_app():
    forbidden = ("epub_build.impl", "epub_build.app", "epub_build.cli")
    assert _forbidden_imports(REPO_ROOT / "epub_build" / "stages", forbidden) == []


def test_importing_framework_modules_does_not_pull_in_stages_or_impl():
    import subprocess
    import sys
    import textwrap

    code = textwrap.dedent(
        """\
        import importlib
        import pkgutil
        import sys

        import epub_build.framework as pkg

        forbidden = ("epub_build.impl", "epub_build.stages", "epub_build.app")

        for module in pkgutil.walk_packages(pkg.__path__, pkg.__name__ + "."):
            before = set(sys.modules)
            importlib.import_module(module.name)
            loaded = sorted(name for name in (set(sys.modules) - before) if name.startswith(forbidden))
            if loaded:
                raise SystemExit(f"Importing {module.name} loaded forbidden modules: {loaded}")
        """
    )

    proc = subprocess.run(
        [sys.executable, "-c", code],
        capture_output=True,
        text=True,
        cwd=str(REPO_ROOT),
    )
    assert proc.returncode == 0, proc.stderr or proc.stdout
