import ast
import pathlib

import helpdesk_core.workflows as engine

FRAMEWORK_ROOTS = {"django", "rest_framework", "celery", "drf_spectacular", "helpdesk_core"}


def test_engine_package_stays_framework_free():
    """
    Guardrail: the pure engine must not import Django, DRF, Celery or the
    app's own models/services.
    """
    pkg_dir = pathlib.Path(engine.__file__).resolve().parent
    offenders = []
    for p in sorted(pkg_dir.rglob("*.py")):
        tree = ast.parse(p.read_text(encoding="utf-8"), filename=str(p))
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                names = [a.name for a in node.names]
            elif isinstance(node, ast.ImportFrom) and node.level == 0:
                names = [node.module or ""]
            else:
                continue
            for name in names:
                if name.split(".")[0] in FRAMEWORK_ROOTS:
                    offenders.append(f"{p.name}:{node.lineno}: {name}")
    assert not offenders, "Framework imports in the workflow engine:\n" + "\n".join(offenders)


def test_boundary_names_are_exported():
    for name in (
        "evaluate_transition",
        "categorize_status",
        "TicketWorkflowSnapshot",
        "StatusCategorizer",
        "WorkflowDocument",
        "parse_definition",
        "serialize_definition",
    ):
        assert hasattr(engine, name), name
        assert name in engine.__all__

    assert engine.evaluate_transition is engine.evaluate
    assert engine.categorize_status is engine.categorize
