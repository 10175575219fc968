import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]


def _imports(directory: Path):
    for py_file in directory.rglob("*.py"):
        tree = ast.parse(py_file.read_text(encoding="utf-8"), filename=str(py_file))
        rel_path = py_file.relative_to(REPO_ROOT)
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    yield rel_path, node.lineno, alias.name
            elif isinstance(node, ast.ImportFrom):
                yield rel_path, node.lineno, node.module or ""


def test_pipeline_layer_does_not_import_http_layer():
    """Pipeline layer must not depend on the web transport."""
    violations = [
        f"{rel_path}:{lineno} imports {module}"
        for rel_path, lineno, module in _imports(REPO_ROOT / "clipmerge" / "pipeline")
        if module.startswith(("fastapi", "starlette", "uvicorn", "clipmerge.infrastructure.web_server",
                              "clipmerge.infrastructure.progress_hub"))
    ]
    assert not violations, "Pipeline layer must not import the HTTP layer:\n" + "\n".join(violations)


def test_domain_layer_has_no_infrastructure_imports():
    violations = [
        f"{rel_path}:{lineno} imports {module}"
        for rel_path, lineno, module in _imports(REPO_ROOT / "clipmerge" / "domain")
        if module.startswith(("clipmerge.infrastructure", "clipmerge.pipeline", "subprocess"))
    ]
    assert not violations, "Domain layer must stay free of process/IO code:\n" + "\n".join(violations)
