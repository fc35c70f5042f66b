"""Command-line entry points for the restaurant ERP toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into calls on the business layer, and printing the
results. Keeping the CLI thin lets tests and scripts reuse the same parser
configuration.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import (
    boston,
    core_logic,
    data_manager,
    log,
    material_import,
    report_export,
    reporting,
    sales_import,
    setup_excel,
    shamsi,
)


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed.

    ``writes`` commands have the workbook saved after a zero exit code.
    Commands with ``needs_workbook`` unset run without a runtime context.
    """

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[Optional[core_logic.RuntimeContext], argparse.Namespace], int]
    writes: bool = False
    needs_workbook: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="resto-cli",
        description="Command-line tools for the Restaurant ERP workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the current directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales entry and imports."""
    specs = {
        "init": register_init_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "add-material": register_add_material_command(subparsers),
        "add-recipe": register_add_recipe_command(subparsers),
        "sale": register_sale_command(subparsers),
        "import-sales": register_import_sales_command(subparsers),
        "delete-batch": register_delete_batch_command(subparsers),
        "receive-stock": register_receive_stock_command(subparsers),
        "import-materials": register_import_materials_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "products": register_products_command(subparsers),
        "materials": register_materials_command(subparsers),
        "history": register_history_command(subparsers),
        "report": register_report_command(subparsers),
        "boston": register_boston_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


# ---------------------------------------------------------------------------
# Argument types
# ---------------------------------------------------------------------------


def decimal_arg(text: str) -> Decimal:
    """argparse ``type`` accepting plain or Persian-digit numbers."""
    try:
        return Decimal(shamsi.to_latin_digits(text).replace(",", ""))
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid number: {text!r}") from exc


def date_arg(text: str) -> str:
    try:
        return shamsi.normalize(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def ingredient_arg(text: str) -> Tuple[str, Decimal]:
    """Parse ``MATERIAL_ID=AMOUNT``."""
    material_id, sep, amount = text.partition("=")
    if not sep or not material_id.strip():
        raise argparse.ArgumentTypeError(f"expected MATERIAL_ID=AMOUNT, got {text!r}")
    return material_id.strip(), decimal_arg(amount)


def sale_line_arg(text: str) -> core_logic.ManualSaleLine:
    """Parse ``PRODUCT_ID:QUANTITY:UNIT_PRICE``."""
    parts = text.split(":")
    if len(parts) != 3 or not parts[0].strip():
        raise argparse.ArgumentTypeError(f"expected PRODUCT_ID:QUANTITY:UNIT_PRICE, got {text!r}")
    return core_logic.ManualSaleLine(
        product_id=parts[0].strip(),
        quantity=decimal_arg(parts[1]),
        unit_price=decimal_arg(parts[2]),
    )


def mapping_arg(text: str) -> Tuple[str, str]:
    """Parse ``FILE_CODE=PRODUCT_ID``."""
    code, sep, product_id = text.partition("=")
    if not sep or not code.strip() or not product_id.strip():
        raise argparse.ArgumentTypeError(f"expected CODE=PRODUCT_ID, got {text!r}")
    return code.strip(), product_id.strip()


# ---------------------------------------------------------------------------
# Write command registrations
# ---------------------------------------------------------------------------


def register_init_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``init``."""
    name = "init"
    help_text = "Create the master workbook named in config.ini."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--force", action="store_true", help="Overwrite an existing workbook.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_init, needs_workbook=False)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Define a new product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--code", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--department", default=None, help="Sale department (config default when omitted).")
        parser.add_argument("--segment", default=None, help="Production segment (config default when omitted).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product, writes=True)


def register_add_material_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-material``."""
    name = "add-material"
    help_text = "Define a new raw material and its unit price."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--code", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--unit", required=True)
        parser.add_argument("--price", required=True, type=decimal_arg)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_material, writes=True)


def register_add_recipe_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-recipe``."""
    name = "add-recipe"
    help_text = "Attach a recipe (list of material amounts) to a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument(
            "--ingredient",
            dest="ingredients",
            action="append",
            required=True,
            type=ingredient_arg,
            metavar="MATERIAL_ID=AMOUNT",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_recipe, writes=True)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record manually entered sale lines as one batch."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--line",
            dest="lines",
            action="append",
            required=True,
            type=sale_line_arg,
            metavar="PRODUCT_ID:QUANTITY:UNIT_PRICE",
        )
        parser.add_argument("--date", type=date_arg, default=None, help="Shamsi sale date (today by default).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, writes=True)


def register_import_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import-sales``."""
    name = "import-sales"
    help_text = "Import a CSV or Excel sales export as one batch."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("file", type=Path)
        parser.add_argument("--code-column", required=True)
        parser.add_argument("--quantity-column", required=True)
        parser.add_argument("--price-column", required=True)
        parser.add_argument("--date-column", required=True)
        parser.add_argument("--name-column", default="")
        parser.add_argument(
            "--map",
            dest="mappings",
            action="append",
            default=[],
            type=mapping_arg,
            metavar="CODE=PRODUCT_ID",
            help="Resolve an unknown file code to an existing product.",
        )
        parser.add_argument(
            "--create-missing",
            action="store_true",
            help="Create products for codes that are still unknown.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import_sales, writes=True)


def register_delete_batch_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-batch``."""
    name = "delete-batch"
    help_text = "Delete a sale batch and its entries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("batch_id")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_batch, writes=True)


def register_receive_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``receive-stock``."""
    name = "receive-stock"
    help_text = "Record a purchase of a raw material and update its stock and price."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--material-id", required=True)
        parser.add_argument("--quantity", required=True, type=decimal_arg)
        parser.add_argument("--unit-price", required=True, type=decimal_arg)
        parser.add_argument("--discount", type=decimal_arg, default=Decimal("0"))
        parser.add_argument("--tax", type=decimal_arg, default=Decimal("0"))
        parser.add_argument("--shipping", type=decimal_arg, default=Decimal("0"))
        parser.add_argument("--seller", default="")
        parser.add_argument("--invoice", default="", help="Supplier invoice number.")
        parser.add_argument("--notes", default="")
        parser.add_argument("--date", type=date_arg, default=None, help="Shamsi receipt date (today by default).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_receive_stock, writes=True)


def register_import_materials_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import-materials``."""
    name = "import-materials"
    help_text = "Create raw materials from a CSV or Excel file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("file", type=Path)
        parser.add_argument("--code-column", default=None)
        parser.add_argument("--name-column", default=None)
        parser.add_argument("--unit-column", default=None)
        parser.add_argument("--price-column", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import_materials, writes=True)


# ---------------------------------------------------------------------------
# Read command registrations
# ---------------------------------------------------------------------------


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "List product definitions."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products)


def register_materials_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``materials``."""
    name = "materials"
    help_text = "List raw materials with their price and stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_materials)


def register_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``history``."""
    name = "history"
    help_text = "List stored sale batches by date."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_history)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Aggregate sales by department and production segment."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start", type=date_arg, default=None, help="Shamsi start date (month start by default).")
        parser.add_argument("--end", type=date_arg, default=None, help="Shamsi end date (today by default).")
        parser.add_argument(
            "--batch",
            dest="batch_ids",
            action="append",
            default=None,
            help="Report over these batches instead of a date range.",
        )
        parser.add_argument("--recipe-costs", action="store_true", help="Recompute costs from current recipes.")
        parser.add_argument("--json", action="store_true", help="Print the report as JSON.")
        parser.add_argument("--output", type=Path, default=None, help="Also write the report to an .xlsx file.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report)


def register_boston_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``boston``."""
    name = "boston"
    help_text = "Classify products on the Boston matrix over selected batches."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--batch", dest="batch_ids", action="append", required=True)
        parser.add_argument("--json", action="store_true", help="Print rows as JSON.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_boston)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: Optional[core_logic.RuntimeContext],
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_import_mapping(args: argparse.Namespace) -> sales_import.ColumnMapping:
    return sales_import.ColumnMapping(
        product_code=args.code_column,
        quantity=args.quantity_column,
        unit_price=args.price_column,
        date=args.date_column,
        product_name=args.name_column or "",
    )


def translate_material_mapping(args: argparse.Namespace) -> Optional[material_import.MaterialColumnMapping]:
    """Return the explicit column choice, or ``None`` to let the file headers decide."""
    chosen = (args.code_column, args.name_column, args.unit_column, args.price_column)
    if not any(chosen):
        return None
    code, name, unit, price = (column or "" for column in chosen)
    return material_import.MaterialColumnMapping(code=code, name=name, unit=unit, price=price)


def resolve_report_range(args: argparse.Namespace) -> Tuple[str, str]:
    """Fill missing report bounds with the current Shamsi month up to today."""
    today = shamsi.current_date()
    start = args.start or shamsi.month_start(args.end or today)
    end = args.end or today
    return start, end


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def _format_number(value: Decimal) -> str:
    return f"{value:,.2f}" if value != value.to_integral_value() else f"{int(value):,}"


def run_init(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    """Create the workbook configured in ``config.ini``."""
    config_path = data_manager.find_config_file(getattr(args, "config", None))
    output = setup_excel.run_from_config(Path(config_path), overwrite=args.force)
    print(f"Created master workbook at '{output}'.")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.add_product(
        context,
        code=args.code,
        name=args.name,
        sale_department=args.department,
        production_segment=args.segment,
    )
    print(f"Added product {product.product_id} ({product.code} {product.name}).")
    return 0


def run_add_material(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    material = core_logic.add_material(
        context,
        code=args.code,
        name=args.name,
        unit=args.unit,
        price=args.price,
    )
    print(f"Added material {material.material_id} ({material.code} {material.name}).")
    return 0


def run_add_recipe(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    lines = core_logic.add_recipe(context, args.product_id, args.ingredients)
    print(f"Added recipe {lines[0].recipe_id} with {len(lines)} ingredients.")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    batch = core_logic.record_manual_sales(context, args.lines, sale_date=args.date)
    print(
        f"Recorded batch {batch.batch_id} on {batch.start_date}: "
        f"{len(batch.entries)} lines, revenue {_format_number(batch.total_revenue)}."
    )
    return 0


def run_import_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Import a sales file; exit code 4 when codes still need mapping."""
    result = core_logic.import_sales_file(
        context,
        args.file,
        translate_import_mapping(args),
        product_mappings=dict(args.mappings),
        create_missing=args.create_missing,
    )
    for product in result.created_products:
        print(f"Created product {product.product_id} for code {product.code}.")
    if not result.saved:
        print("Some product codes are unknown; nothing was imported:")
        for unmatched in result.unmatched:
            hints = ", ".join(f"{p.product_id} ({p.name})" for p in unmatched.possible_matches)
            suffix = f" -> maybe {hints}" if hints else ""
            print(f"  {unmatched.code} {unmatched.name} x{unmatched.occurrences}{suffix}")
        print("Use --map CODE=PRODUCT_ID or --create-missing.")
        return 4
    summary = result.summary
    print(
        f"Imported batch {result.batch.batch_id}: {summary.total_products} products, "
        f"{_format_number(summary.total_quantity)} units, revenue {_format_number(summary.total_revenue)}."
    )
    return 0


def run_delete_batch(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_sales_batch(context, args.batch_id)
    print(f"Deleted batch {args.batch_id}.")
    return 0


def run_receive_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    entry = core_logic.receive_stock(
        context,
        args.material_id,
        args.quantity,
        args.unit_price,
        discount=args.discount,
        tax=args.tax,
        shipping=args.shipping,
        seller=args.seller,
        invoice_number=args.invoice,
        notes=args.notes,
        entry_date=args.date,
    )
    material = core_logic.get_material(context, entry.material_id)
    print(
        f"Received {_format_number(entry.quantity)} {material.unit} of {material.name} "
        f"for {_format_number(entry.total_price)}; stock now {_format_number(material.stock)}."
    )
    return 0


def run_import_materials(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.import_materials_file(context, args.file, translate_material_mapping(args))
    for material in result.created:
        print(f"Created material {material.material_id} ({material.code} {material.name}).")
    for row in result.rejected:
        print(f"  Row {row.row_number} skipped: {', '.join(row.reasons)}")
    if not result.created:
        print("No materials were imported.")
        return 4
    print(f"Imported {len(result.created)} materials, skipped {len(result.rejected)} rows.")
    return 0


def run_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for product in core_logic.list_products(context):
        print(
            f"{product.product_id}\t{product.code}\t{product.name}\t"
            f"{product.sale_department}\t{product.production_segment}"
        )
    return 0


def run_materials(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for material in core_logic.list_materials(context):
        print(
            f"{material.material_id}\t{material.code}\t{material.name}\t{material.unit}\t"
            f"{_format_number(material.price)}\t{_format_number(material.stock)}"
        )
    return 0


def run_history(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for batch in reporting.sort_batches_by_date(core_logic.get_sales_history(context)):
        print(
            f"{batch.batch_id}\t{batch.start_date}\t{batch.end_date}\t{len(batch.entries)}\t"
            f"{_format_number(batch.total_revenue)}\t{_format_number(batch.total_cost)}"
        )
    return 0


def _print_report(report: reporting.SalesReport) -> None:
    print(f"Sales report {report.time_range.start} .. {report.time_range.end}")
    overall = report.overall
    print(
        f"  Units {_format_number(overall.total_units)}  Revenue {_format_number(overall.total_revenue)}  "
        f"Cost {_format_number(overall.total_cost)}  Net {_format_number(overall.net_revenue)}"
    )
    for title, buckets in (("Departments", report.by_department), ("Segments", report.by_production_segment)):
        print(title)
        for name, bucket in buckets.items():
            print(
                f"  {name}: revenue {_format_number(bucket.total_revenue)}, "
                f"cost {_format_number(bucket.total_cost)}, net {_format_number(bucket.net_revenue)}"
            )


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print (and optionally export) a date-range or batch-selection report."""
    boston_rows: List[boston.BostonData] = []
    if args.batch_ids is not None:
        report = core_logic.get_sales_report_for_batches(context, args.batch_ids, recipe_costs=args.recipe_costs)
        boston_rows = core_logic.get_boston_data(context, args.batch_ids)
    else:
        start, end = resolve_report_range(args)
        report = core_logic.get_sales_report(context, start, end, recipe_costs=args.recipe_costs)

    if args.json:
        print(json.dumps(reporting.report_to_dict(report), ensure_ascii=False, indent=2))
    else:
        _print_report(report)
    if args.output is not None:
        path = report_export.export_report(report, boston_rows, args.output)
        print(f"Wrote {path}")
    return 0


def run_boston(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    rows = core_logic.get_boston_data(context, args.batch_ids)
    if args.json:
        print(json.dumps(boston.boston_to_dict(rows), ensure_ascii=False, indent=2))
        return 0
    for row in rows:
        print(
            f"{row.code}\t{row.name}\tshare {row.market_share:.2f}%\t"
            f"growth {row.market_growth:.2f}%\t{row.category.value}"
        )
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, sales_import.ImportValidationError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    spec = command_table[args.command]
    try:
        context = load_runtime_context(args.config) if spec.needs_workbook else None
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and spec.writes and context is not None:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
