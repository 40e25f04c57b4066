"""
Value-based page state for WebForms postbacks.

A field set is a plain ``{name: value}`` dict holding every hidden/control
field the page expects back on a postback. Nothing here mutates its input:
``apply_overrides`` and ``merge`` return new dicts, and the caller keeps a
single "current state" reference that it reassigns after each step.
"""

from datetime import datetime


def log(msg):
    print(f'[{datetime.now()}] [form] {msg}', flush=True)


def _control_id(name):
    # ASP.NET renders ctl00$Content$ddlX as id="ctl00_Content_ddlX"
    return name.replace('$', '_')


def _select_value(select):
    option = select.find('option', selected=True) or select.find('option')
    if option is None:
        return None
    return option.get('value', option.get_text(strip=True))


def read_control(soup, name):
    """
    Read what a browser would submit for control ``name``.

    Inputs give their value attribute, selects their selected option (or the
    first one, as a browser would), textareas their text, and any other
    element found by id gives its trimmed text. A missing control is None.
    """
    candidates = soup.find_all(attrs={'name': name})
    if not candidates:
        el = soup.find(id=_control_id(name))
        candidates = [el] if el is not None else []
    if not candidates:
        return None

    for el in candidates:
        if el.name == 'input':
            if el.get('type', '').lower() in ('checkbox', 'radio'):
                if el.has_attr('checked'):
                    return el.get('value', 'on')
                continue
            return el.get('value', '')
        if el.name == 'select':
            return _select_value(el)
        if el.name == 'textarea':
            return el.get_text()
        return el.get_text(strip=True)
    return None


def load_fields(soup, field_names):
    """Build a field set holding the current value of every requested control."""
    fields = {name: read_control(soup, name) for name in field_names}
    missing = [name for name, value in fields.items() if value is None]
    log(f'Loaded {len(fields)} fields ({len(missing)} absent)')
    if missing:
        log(f'  absent: {missing}')
    return fields


def apply_overrides(fields, overrides):
    """Return a copy of ``fields`` with the given names replaced (or added)."""
    if not overrides:
        return dict(fields)
    return {**fields, **overrides}


def merge(fields, updates):
    """
    Fold server-pushed updates into a field set.

    Keys present in ``updates`` win; every other key keeps its last known
    value. ``merge(fields, {}) == fields``.
    """
    merged = dict(fields)
    for name, value in updates.items():
        merged[name] = value
    return merged


def build_form_data(fields, field_names, overrides=None):
    """
    Compose the ordered body of one postback: ``field_names`` in order,
    valued from ``fields`` with ``overrides`` on top. Absent values are sent
    as empty strings, the same as an empty browser field.
    """
    state = apply_overrides(fields, overrides)
    form_data = {}
    for name in field_names:
        value = state.get(name)
        form_data[name] = '' if value is None else value
    return form_data
