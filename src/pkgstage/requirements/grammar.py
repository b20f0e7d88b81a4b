REQUIREMENT_GRAMMAR = r"""
start: PACKAGE (_SEP? CONSTRAINT)?

// vendor/name, following Composer's package naming rules
PACKAGE: /[A-Za-z0-9](?:[_.-]?[A-Za-z0-9]+)*\/[A-Za-z0-9](?:(?:[_.]|-{1,2})?[A-Za-z0-9]+)*/

_SEP: ":"

// everything after the separator (or whitespace) is the version constraint,
// e.g. "^1.2", ">=2.0 <3.0", "^1.2 || ^2.0", "dev-main"
CONSTRAINT: /[\w^~<>=!*@.][^\n]*/

%import common.WS
%ignore WS
"""
