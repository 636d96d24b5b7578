"""
Quotation composition: spaces -> components -> line items.

The database stores the three levels as flat tables linked by nullable
foreign keys. This module rebuilds the nested tree shown to users and
replaces a quotation's whole subtree from a tree submitted by the client.

None of the writer functions commit; the caller owns the transaction.
"""
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from models import QuotationSpace, QuotationComponent, QuotationLineItem
from schemas import SpaceIn, LineItemIn


DEFAULT_MEASUREMENT_UNIT = "mm"


# ==================== Reader ====================

def normalize_line_item(item: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy a line item row and expose both the current and legacy cost item keys."""
    normalized = dict(item)
    cost_item = item.get("quotation_cost_item") or item.get("cost_item")
    cost_item_id = item.get("quotation_cost_item_id") or item.get("cost_item_id")
    normalized["cost_item"] = cost_item
    normalized["quotation_cost_item"] = cost_item
    normalized["cost_item_id"] = cost_item_id
    normalized["quotation_cost_item_id"] = cost_item_id
    return normalized


def organize_quotation_data(
    spaces: Iterable[Mapping[str, Any]],
    components: Iterable[Mapping[str, Any]],
    line_items: Iterable[Mapping[str, Any]],
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Rebuild the space/component/line item tree from flat rows.

    Inputs are expected in display order. Returns a dict with:
    - spaces: space rows with nested "components" (each with "lineItems")
      and the space's direct "lineItems"
    - orphanComponents: components without a space_id
    - orphanLineItems: line items that resolve to neither a component nor a space

    Components whose space_id points at a space that is not in the input are
    left out of both the tree and orphanComponents.

    Never raises on bad references and never mutates its inputs.
    """
    components = list(components)

    space_map: Dict[str, Dict[str, Any]] = {}
    for space in spaces:
        space_map[space["id"]] = {**space, "components": [], "lineItems": []}

    # Flat lookup of every component, attached or not
    component_map: Dict[str, Dict[str, Any]] = {}
    for component in components:
        component_map[component["id"]] = {**component, "lineItems": []}

    for component in components:
        space_id = component.get("space_id")
        if space_id and space_id in space_map:
            space_map[space_id]["components"].append({**component, "lineItems": []})

    orphan_components = [
        component_map[component["id"]]
        for component in components
        if not component.get("space_id")
    ]
    headless_ids = {component["id"] for component in orphan_components}

    orphan_line_items: List[Dict[str, Any]] = []
    for raw_item in line_items:
        item = normalize_line_item(raw_item)
        component_id = item.get("quotation_component_id")
        space_id = item.get("quotation_space_id")

        if component_id and component_id in component_map:
            target = _find_attached_component(space_map, component_id)
            if target is not None:
                target["lineItems"].append(item)
                continue
            if component_id in headless_ids:
                component_map[component_id]["lineItems"].append(item)
                continue

        if space_id and space_id in space_map:
            space_map[space_id]["lineItems"].append(item)
        else:
            orphan_line_items.append(item)

    return {
        "spaces": list(space_map.values()),
        "orphanComponents": orphan_components,
        "orphanLineItems": orphan_line_items,
    }


def _find_attached_component(
    space_map: Mapping[str, Dict[str, Any]], component_id: str
) -> Optional[Dict[str, Any]]:
    # Spaces in insertion order, then components in attachment order
    for space in space_map.values():
        for component in space["components"]:
            if component["id"] == component_id:
                return component
    return None


# ==================== Writer ====================

def delete_quotation_tree(db: Session, quotation_id: str) -> None:
    """Remove every line item, component and space of a quotation (children first)."""
    db.query(QuotationLineItem).filter(
        QuotationLineItem.quotation_id == quotation_id
    ).delete(synchronize_session=False)
    db.query(QuotationComponent).filter(
        QuotationComponent.quotation_id == quotation_id
    ).delete(synchronize_session=False)
    db.query(QuotationSpace).filter(
        QuotationSpace.quotation_id == quotation_id
    ).delete(synchronize_session=False)


def _line_item_values(item: LineItemIn) -> Dict[str, Any]:
    """Column values shared by both write paths."""
    return {
        "quotation_cost_item_id": item.quotation_cost_item_id or item.cost_item_id,
        "name": item.name,
        "length": item.length,
        "width": item.width,
        "quantity": item.quantity,
        "unit_code": item.unit_code,
        "rate": item.rate,
        "amount": item.amount,
        "notes": item.notes,
        "item_metadata": item.metadata,
    }


def replace_quotation_tree(db: Session, quotation_id: str, spaces: Sequence[SpaceIn]) -> Dict[str, int]:
    """
    Replace a quotation's subtree with the submitted spaces.

    New rows get fresh identifiers. Components are re-linked to the new
    space ids by (space index) and line items to the new component ids by
    (space index, component index). Line item display_order is one counter
    across the whole submission.

    Returns the number of rows inserted per level.
    """
    delete_quotation_tree(db, quotation_id)

    # Spaces
    new_spaces = [
        QuotationSpace(
            quotation_id=quotation_id,
            space_type_id=space.space_type_id,
            name=space.name,
            description=space.description or None,
            subtotal=space.subtotal or 0,
            display_order=space.sort_order if space.sort_order is not None else index,
        )
        for index, space in enumerate(spaces)
    ]
    db.add_all(new_spaces)
    db.flush()  # Assign ids in input order
    space_ids: Dict[int, str] = {index: row.id for index, row in enumerate(new_spaces)}

    # Components, tagged with their position in the submitted tree
    positions: List[Tuple[int, int]] = []
    new_components: List[QuotationComponent] = []
    for space_index, space in enumerate(spaces):
        for comp_index, component in enumerate(space.components):
            positions.append((space_index, comp_index))
            new_components.append(QuotationComponent(
                quotation_id=quotation_id,
                space_id=space_ids[space_index],
                component_type_id=component.component_type_id,
                component_variant_id=component.component_variant_id,
                name=component.name,
                description=component.description or None,
                subtotal=component.subtotal or 0,
                display_order=component.sort_order if component.sort_order is not None else comp_index,
            ))
    if new_components:
        db.add_all(new_components)
        db.flush()
    component_ids: Dict[Tuple[int, int], str] = {
        position: row.id for position, row in zip(positions, new_components)
    }

    # Line items: component items first, then the space's own items
    new_line_items: List[QuotationLineItem] = []
    display_order = 0
    for space_index, space in enumerate(spaces):
        space_id = space_ids.get(space_index)
        for comp_index, component in enumerate(space.components):
            component_id = component_ids.get((space_index, comp_index))
            for item in component.line_items:
                new_line_items.append(QuotationLineItem(
                    quotation_id=quotation_id,
                    quotation_space_id=space_id,
                    quotation_component_id=component_id,
                    measurement_unit=item.measurement_unit or DEFAULT_MEASUREMENT_UNIT,
                    display_order=display_order,
                    **_line_item_values(item),
                ))
                display_order += 1
        for item in space.line_items:
            new_line_items.append(QuotationLineItem(
                quotation_id=quotation_id,
                quotation_space_id=space_id,
                quotation_component_id=None,
                measurement_unit=item.measurement_unit or DEFAULT_MEASUREMENT_UNIT,
                display_order=display_order,
                **_line_item_values(item),
            ))
            display_order += 1
    if new_line_items:
        db.add_all(new_line_items)
        db.flush()

    return {
        "spaces": len(new_spaces),
        "components": len(new_components),
        "line_items": len(new_line_items),
    }


def replace_line_items(db: Session, quotation_id: str, line_items: Sequence[LineItemIn]) -> int:
    """
    Replace only the line items of a quotation (flat payload).

    Space and component references are stored exactly as submitted.
    """
    db.query(QuotationLineItem).filter(
        QuotationLineItem.quotation_id == quotation_id
    ).delete(synchronize_session=False)

    new_line_items = [
        QuotationLineItem(
            quotation_id=quotation_id,
            quotation_space_id=item.quotation_space_id,
            quotation_component_id=item.quotation_component_id,
            measurement_unit=item.measurement_unit or DEFAULT_MEASUREMENT_UNIT,
            display_order=item.display_order if item.display_order is not None else index,
            **_line_item_values(item),
        )
        for index, item in enumerate(line_items)
    ]
    if new_line_items:
        db.add_all(new_line_items)
        db.flush()
    return len(new_line_items)


def copy_quotation_tree(db: Session, source_id: str, target_id: str) -> Dict[str, int]:
    """
    Copy every space, component and line item of one quotation onto another.

    Headless components and orphan line items are copied too; references are
    remapped to the new rows and references to rows outside the source are
    dropped. Components whose space no longer exists are skipped, as the tree
    never shows them.
    """
    spaces = (
        db.query(QuotationSpace)
        .filter(QuotationSpace.quotation_id == source_id)
        .order_by(QuotationSpace.display_order)
        .all()
    )
    components = (
        db.query(QuotationComponent)
        .filter(QuotationComponent.quotation_id == source_id)
        .order_by(QuotationComponent.display_order)
        .all()
    )
    line_items = (
        db.query(QuotationLineItem)
        .filter(QuotationLineItem.quotation_id == source_id)
        .order_by(QuotationLineItem.display_order)
        .all()
    )

    space_copies = [
        QuotationSpace(
            quotation_id=target_id,
            space_type_id=space.space_type_id,
            name=space.name,
            description=space.description,
            subtotal=space.subtotal,
            display_order=space.display_order,
        )
        for space in spaces
    ]
    db.add_all(space_copies)
    db.flush()
    space_id_map = {old.id: new.id for old, new in zip(spaces, space_copies)}

    components = [c for c in components if not c.space_id or c.space_id in space_id_map]

    component_copies = [
        QuotationComponent(
            quotation_id=target_id,
            space_id=space_id_map.get(component.space_id),
            component_type_id=component.component_type_id,
            component_variant_id=component.component_variant_id,
            name=component.name,
            description=component.description,
            subtotal=component.subtotal,
            display_order=component.display_order,
        )
        for component in components
    ]
    db.add_all(component_copies)
    db.flush()
    component_id_map = {old.id: new.id for old, new in zip(components, component_copies)}

    item_copies = [
        QuotationLineItem(
            quotation_id=target_id,
            quotation_space_id=space_id_map.get(item.quotation_space_id),
            quotation_component_id=component_id_map.get(item.quotation_component_id),
            quotation_cost_item_id=item.quotation_cost_item_id,
            name=item.name,
            length=item.length,
            width=item.width,
            quantity=item.quantity,
            unit_code=item.unit_code,
            rate=item.rate,
            amount=item.amount,
            measurement_unit=item.measurement_unit,
            display_order=item.display_order,
            notes=item.notes,
            item_metadata=item.item_metadata,
        )
        for item in line_items
    ]
    db.add_all(item_copies)
    db.flush()

    return {
        "spaces": len(space_copies),
        "components": len(component_copies),
        "line_items": len(item_copies),
    }
