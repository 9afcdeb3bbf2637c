from src.utils.export import export_branch_json, export_branch_markdown

__all__ = [
    "export_branch_json",
    "export_branch_markdown",
]
