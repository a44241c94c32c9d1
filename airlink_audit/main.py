"""
Command-line report generator for AirLink audit results.

Usage:
    airlink-audit-report --project-root . --output-dir audit_results
    python -m airlink_audit --manual-results manual_results.json --evidence-dir evidence
"""

import logging
import time
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel

from .config import AuditConfig
from .reports.generator import print_summary
from .reports.pipeline import generate_audit_report

app = typer.Typer(
    name="airlink-audit-report",
    help="AirLink audit report generator",
    add_completion=False,
)
console = Console()

logger = logging.getLogger("airlink_audit.main")


def setup_logging(verbose: bool = False):
    """Настроить логирование."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@app.command()
def generate(
    project_root: Optional[Path] = typer.Option(
        None, "--project-root", help="Корень проекта (по умолчанию текущая директория)"
    ),
    output_dir: Optional[Path] = typer.Option(
        None, "--output-dir", help="Директория отчётов (по умолчанию <root>/audit_results)"
    ),
    timestamp: Optional[str] = typer.Option(
        None, "--timestamp", help="Суффикс имён файлов (по умолчанию epoch ms)"
    ),
    automated_results: Optional[Path] = typer.Option(
        None, "--automated-results", help="Директория JSON результатов автоматических тестов"
    ),
    manual_results: Optional[Path] = typer.Option(
        None, "--manual-results", help="Файл manual_results.json"
    ),
    evidence_dir: Optional[Path] = typer.Option(
        None, "--evidence-dir", help="Директория доказательств"
    ),
    template: Optional[Path] = typer.Option(
        None, "--template", help="Шаблон консолидированного отчёта"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Подробный вывод"),
):
    """📊 Сгенерировать отчёты аудита (JSON, Markdown, HTML, CSV)."""
    load_dotenv()
    setup_logging(verbose)

    try:
        overrides = {
            "project_root": project_root,
            "output_dir": output_dir,
            "automated_results_dir": automated_results,
            "manual_results_path": manual_results,
            "evidence_dir": evidence_dir,
            "template_path": template,
        }
        config = AuditConfig(**{k: v for k, v in overrides.items() if v is not None})
        run_timestamp = timestamp or str(int(time.time() * 1000))
        out = config.resolved_output_dir()

        console.print(Panel(
            f"📊 [bold]AirLink Audit Report[/]\n"
            f"[dim]Project:[/] {config.project_root}\n"
            f"[dim]Output:[/] {out}\n"
            f"[dim]Timestamp:[/] {run_timestamp}",
        ))

        run = generate_audit_report(
            project_root=config.project_root,
            output_dir=out,
            timestamp=run_timestamp,
            automated_results_dir=config.automated_results_dir,
            manual_results_path=config.manual_results_path,
            evidence_dir=config.evidence_dir,
            template_path=config.resolved_template_path(),
        )
    except Exception as e:
        logger.error(f"❌ Report generation failed: {e}", exc_info=verbose)
        console.print(f"[red]❌ Report generation failed: {e}[/]")
        raise typer.Exit(1)

    paths = dict(run.paths)
    for path in run.consolidated:
        paths[path.name] = path
    print_summary(run.data, paths, console)
    console.print(f"[green]✅ Reports available in: {out}[/]")


if __name__ == "__main__":
    app()
