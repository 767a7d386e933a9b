"""
Command Line Interface for Strata Task Manager.
"""

import click
from datetime import datetime
from pathlib import Path
from .version import VERSION
from .config import Settings, CONFIG_FILENAME
from .data import YAMLStorage
from .data.io import atomic_write, DATA_JSON, DATA_YAML
from .data.validate import store_schema
from .engine import TaskEngine
from .filters import FilterState, CompletionFilter, BlockingFilter
from .graph.hierarchy import Placement
from .models import ItemType, DependencyKind
from .recovery import StrataError

TYPE_ICONS = {
    ItemType.AMBITION: "🏔️",
    ItemType.OBJECTIVE: "🎯",
    ItemType.MISSION: "🚩",
    ItemType.TASK: "📝",
}


class EngineContext:
    """Settings and a lazily populated engine shared by every command."""

    def __init__(self, data_dir):
        self.data_dir = data_dir
        self._settings = None
        self._engine = None

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            try:
                self._settings = Settings.load(self.data_dir)
            except StrataError as e:
                _fail(e)
        return self._settings

    @property
    def engine(self) -> TaskEngine:
        if self._engine is None:
            try:
                storage = YAMLStorage(self.settings.store_path)
                engine = TaskEngine(storage, self.settings.owner_id)
                engine.populate()
            except StrataError as e:
                _fail(e)
            self._engine = engine
        return self._engine

    def resolve(self, ref: str):
        """Find an item by full id or unique id prefix."""
        engine = self.engine
        if ref in engine.snapshot:
            return engine.get(ref)
        matches = engine.entries(lambda item: item.id.startswith(ref))
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise click.ClickException(f"No item matches '{ref}'")
        raise click.ClickException(f"'{ref}' is ambiguous ({len(matches)} items match)")


def _fail(e: StrataError):
    raise click.ClickException(f"❌ {e.message}")

def _short(item_id: str) -> str:
    return item_id[:8]

def _describe(engine: TaskEngine, item, now: datetime) -> str:
    marks = "[x]" if item.completed else "[ ]"
    kind = engine.effective_type(item)
    line = f"{marks} {TYPE_ICONS[kind]} {item.title or '(untitled)'}  {click.style(_short(item.id), dim=True)}"
    if not item.completed and engine.is_blocked(item, now):
        line += " ⛔"
    gate = engine.snapshot.date_dependency_for(item.id)
    if gate is not None and gate.is_live(now):
        line += f" ⏳ {gate.unblock_at.astimezone():%Y-%m-%d %H:%M}"
    return line


@click.group()
@click.version_option(version=VERSION, prog_name="strata")
@click.option('--data-dir', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Directory holding the task store (default: $STRATATM_DATA_DIR or ~/.local/share/stratatm/data)')
@click.pass_context
def main(ctx, data_dir):
    """
    Strata Task Manager - a hierarchical task list with blocking dependencies.
    """
    ctx.obj = EngineContext(data_dir)


@main.command()
@click.option('--owner', default=None, help='Owner id to record in config.yml')
@click.pass_obj
def init(obj, owner):
    """Create the data directory and an empty store."""
    settings = obj.settings
    if settings.store_path.exists():
        click.echo(f"❌ Store already exists at {settings.store_path}")
        return

    try:
        YAMLStorage(settings.store_path).save()
        click.echo(f"📋 Created {settings.store_path}")
        if owner:
            atomic_write(DATA_YAML, settings.data_dir / CONFIG_FILENAME, {'owner_id': owner})
            click.echo(f"👤 Owner set to {owner}")
        click.echo("✅ Store initialized successfully!")
    except StrataError as e:
        _fail(e)


@main.command()
@click.argument('title')
@click.option('-p', '--parent', default=None, help='Parent item id (or unique prefix)')
@click.option('--position', type=int, default=None, help='Slot among the siblings (default: last)')
@click.option('--type', 'item_type', type=click.Choice([t.value for t in ItemType]), default=None,
              help='Pin the item type instead of deriving it')
@click.option('-d', '--description', default=None, help='Longer description')
@click.pass_obj
def add(obj, title, parent, position, item_type, description):
    """Add a new item."""
    engine = obj.engine
    partial = {'title': title, 'description': description}
    if parent:
        partial['parent_id'] = obj.resolve(parent).id
    if position is not None:
        partial['position'] = position
    if item_type:
        partial['type'] = item_type
    try:
        item = engine.create(partial)
    except StrataError as e:
        _fail(e)
    click.echo(f"✅ Added {_short(item.id)}: {item.title}")


@main.command(name='list')
@click.option('--todo', 'completion', flag_value=CompletionFilter.TODO.value, help='Only incomplete items')
@click.option('--done', 'completion', flag_value=CompletionFilter.DONE.value, help='Only completed items')
@click.option('--actionable', 'blocking', flag_value=BlockingFilter.ACTIONABLE.value, help='Only actionable items')
@click.option('--blocked', 'blocking', flag_value=BlockingFilter.BLOCKED.value, help='Only blocked items')
@click.option('--blocking', 'blocking', flag_value=BlockingFilter.BLOCKING.value, help='Only items blocking others')
@click.option('-s', '--search', default="", help='Only items whose title contains this text')
@click.option('--root', default=None, help='Start the tree at this item')
@click.pass_obj
def list_items(obj, completion, blocking, search, root):
    """Show the task tree."""
    engine = obj.engine
    state = FilterState(
        completion=CompletionFilter(completion or CompletionFilter.ALL.value),
        blocking=BlockingFilter(blocking or BlockingFilter.ANY.value),
        search=search,
    )
    now = datetime.now().astimezone()
    start = obj.resolve(root) if root else None

    def render(parent, depth):
        for item in engine.filter(state, parent, now):
            click.echo("  " * depth + _describe(engine, item, now))
            render(item, depth + 1)

    if start is not None:
        click.echo(_describe(engine, start, now))
        render(start, 1)
    elif not engine.snapshot.items:
        click.echo("📭 No items yet. Use 'strata add' to create one.")
    else:
        render(None, 0)


@main.command()
@click.argument('ref')
@click.pass_obj
def show(obj, ref):
    """Show one item with its dependencies."""
    engine = obj.engine
    view = engine.view(obj.resolve(ref))
    item = view.item
    if view.ancestors:
        click.echo(" › ".join(a.title or '(untitled)' for a in view.ancestors))
    click.echo(f"{TYPE_ICONS[view.effective_type]} {item.title or '(untitled)'}")
    click.echo(f"   🆔 {item.id}")
    click.echo(f"   🏷️  {view.effective_type.value}{' (pinned)' if item.manual_type else ''}")
    if item.description:
        click.echo(f"   📄 {item.description}")
    if item.completed:
        click.echo(f"   ✅ Completed {item.completed_at.astimezone():%Y-%m-%d %H:%M}")
    elif view.is_blocked:
        click.echo(f"   ⛔ Blocked ({view.blocker_count} direct)")
    else:
        click.echo("   🟢 Actionable")
    for dep in view.dependencies:
        if dep.type == DependencyKind.TASK:
            blocker = engine.snapshot.get(dep.data.blocking_task_id)
            title = blocker.title if blocker else dep.data.blocking_task_id
            click.echo(f"   🔗 Blocked by {title}")
        else:
            click.echo(f"   ⏳ Waits until {dep.data.unblock_at.astimezone():%Y-%m-%d %H:%M}")
    for dep in view.blocking:
        blocked = engine.snapshot.get(dep.blocked_task_id)
        click.echo(f"   ➡️  Blocks {blocked.title if blocked else dep.blocked_task_id}")
    if view.sub_items:
        click.echo(f"   📂 {len(view.sub_items)} sub-item(s)")


@main.command()
@click.argument('ref')
@click.pass_obj
def done(obj, ref):
    """Mark an item completed."""
    try:
        item = obj.engine.update(obj.resolve(ref), completed=True)
    except StrataError as e:
        _fail(e)
    click.echo(f"✅ Completed {item.title}")


@main.command()
@click.argument('ref')
@click.pass_obj
def undone(obj, ref):
    """Mark an item not completed."""
    try:
        item = obj.engine.update(obj.resolve(ref), completed=False)
    except StrataError as e:
        _fail(e)
    click.echo(f"↩️  Reopened {item.title}")


@main.command()
@click.argument('ref')
@click.option('-t', '--title', default=None, help='New title')
@click.option('-d', '--description', default=None, help='New description')
@click.option('--type', 'item_type', type=click.Choice([t.value for t in ItemType] + ['auto']), default=None,
              help="Pin a type, or 'auto' to derive it again")
@click.pass_obj
def edit(obj, ref, title, description, item_type):
    """Change an item's title, description or type."""
    partial = {}
    if title is not None:
        partial['title'] = title
    if description is not None:
        partial['description'] = description or None
    if item_type is not None:
        partial['type'] = None if item_type == 'auto' else item_type
    if not partial:
        click.echo("💡 Nothing to change; pass --title, --description or --type")
        return
    try:
        item = obj.engine.update(obj.resolve(ref), partial)
    except StrataError as e:
        _fail(e)
    click.echo(f"✏️  Updated {item.title}")


@main.command()
@click.argument('ref')
@click.option('-p', '--parent', default=None, help="New parent id, or 'root'")
@click.option('--position', type=int, default=None, help='Slot among the new siblings')
@click.option('--before', 'before', default=None, help='Place just before this item')
@click.option('--after', 'after', default=None, help='Place just after this item')
@click.option('--into', 'into', default=None, help='Append as the last child of this item')
@click.pass_obj
def move(obj, ref, parent, position, before, after, into):
    """Reorder or reparent an item."""
    engine = obj.engine
    item = obj.resolve(ref)
    targets = [(Placement.BEFORE, before), (Placement.AFTER, after), (Placement.CHILD, into)]
    chosen = [(placement, target) for placement, target in targets if target]
    if len(chosen) > 1 or (chosen and (parent or position is not None)):
        raise click.UsageError("Use one of --before/--after/--into, or --parent/--position")

    try:
        if chosen:
            placement, target = chosen[0]
            moved = engine.move_relative(item, obj.resolve(target), placement)
        else:
            if parent is None:
                parent_id = item.parent_id
            elif parent == 'root':
                parent_id = None
            else:
                parent_id = obj.resolve(parent).id
            if position is None:
                position = item.position if parent_id == item.parent_id else len(engine.children_of(parent_id))
            moved = engine.move(item, parent_id, position)
    except StrataError as e:
        _fail(e)
    click.echo(f"📦 Moved {moved.title} to position {moved.position}")


@main.command()
@click.argument('ref')
@click.option('--cascade', is_flag=True, help='Also delete every descendant')
@click.option('-y', '--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_obj
def rm(obj, ref, cascade, yes):
    """Delete an item; its children move up unless --cascade is given."""
    engine = obj.engine
    item = obj.resolve(ref)
    if not yes:
        descendants = len(engine.snapshot.descendants_of(item.id))
        extra = f" and {descendants} descendant(s)" if cascade and descendants else ""
        click.confirm(f"Delete '{item.title}'{extra}?", abort=True)
    try:
        removed = engine.delete(item, cascade=cascade)
    except StrataError as e:
        _fail(e)
    click.echo(f"🗑️  Deleted {len(removed)} item(s)")


@main.command()
@click.argument('ref')
@click.argument('blocker')
@click.pass_obj
def block(obj, ref, blocker):
    """Make BLOCKER block REF."""
    try:
        obj.engine.add_blocker(obj.resolve(ref), obj.resolve(blocker))
    except StrataError as e:
        _fail(e)
    click.echo("🔗 Dependency added")


@main.command()
@click.argument('ref')
@click.argument('blocker')
@click.pass_obj
def unblock(obj, ref, blocker):
    """Remove the edge BLOCKER -> REF."""
    try:
        removed = obj.engine.remove_blocker(obj.resolve(ref), obj.resolve(blocker))
    except StrataError as e:
        _fail(e)
    click.echo("✂️  Dependency removed" if removed else "📭 No such dependency")


@main.command()
@click.argument('ref')
@click.argument('when', nargs=-1, required=True)
@click.pass_obj
def wait(obj, ref, when):
    """Block REF until WHEN, e.g. 'tomorrow', 'in 3 days', 'next friday', '2025-01-31'."""
    try:
        gate = obj.engine.set_unblock_date(obj.resolve(ref), " ".join(when))
    except StrataError as e:
        _fail(e)
    click.echo(f"⏳ Blocked until {gate.unblock_at.astimezone():%Y-%m-%d %H:%M}")


@main.command()
@click.argument('ref')
@click.pass_obj
def nowait(obj, ref):
    """Remove REF's date gate."""
    try:
        removed = obj.engine.clear_unblock_date(obj.resolve(ref))
    except StrataError as e:
        _fail(e)
    click.echo("🔓 Date gate removed" if removed else "📭 No date gate set")


@main.command()
@click.argument('output', type=click.Path(dir_okay=False, path_type=Path))
def schema(output):
    """Write the JSON schema of the store document to OUTPUT."""
    try:
        atomic_write(DATA_JSON, output, store_schema(), create_dirs=True)
    except StrataError as e:
        _fail(e)
    click.echo(f"📐 Schema written to {output}")


if __name__ == "__main__":
    main()
