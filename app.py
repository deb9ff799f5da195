"""
Fraud Chain Viewer
==================
A Flask application that fetches a fraud-transaction chain for one debit
account from the remote fraud-detection API and renders it as an
interactive tree diagram in the browser.

Pipeline (one pass per query):
  1. Query parsing   -> accountNumber + transactionDate (URL or form)
  2. Fetch           -> single GET to {base}/v1.0/fraudds, no retry
  3. Tree model      -> root reused from data or synthesized, records passed
                        through, structure validated with NetworkX
  4. Render          -> node list + parent-key field name handed to the
                        browser-side GoJS TreeModel

The most recent successful tree is kept in memory for the download
endpoints and is replaced wholesale on every new query.
"""

import io
import json
import logging
import math
import os
import time
from datetime import date, datetime
from numbers import Number
from typing import Optional

from flask import Flask, request, jsonify, Response, render_template
from flask_cors import CORS
import pandas as pd
import networkx as nx
import requests

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Flask application setup
# ---------------------------------------------------------------------------
app = Flask(__name__)
app.config.update(
    FRAUD_API_BASE_URL=os.environ.get("FRAUD_API_BASE_URL", "https://fdsapiakrobat.xyz"),
    FRAUD_API_TIMEOUT=float(os.environ.get("FRAUD_API_TIMEOUT", "10")),
    DEFAULT_ACCOUNT_NUMBER=os.environ.get("DEFAULT_ACCOUNT_NUMBER", "050601019213501"),
    DEFAULT_TRANSACTION_DATE=os.environ.get("DEFAULT_TRANSACTION_DATE", "2023-06-13"),
    CORS_ORIGINS=[
        o.strip()
        for o in os.environ.get("CORS_ORIGINS", "http://localhost:5173").split(",")
        if o.strip()
    ],
)
CORS(app, origins=app.config["CORS_ORIGINS"])

# Last successfully built tree (list of node dicts), for the download endpoints
_last_tree = None

ROOT_LABEL = "Debit Account"
PARENT_KEY_PROPERTY = "parentKey"
ACCOUNT_NUMBER_MAX_LENGTH = 15

# Legacy field names some API versions return, mapped to the canonical ones
_KEY_ALIASES = ("debetAccount",)
_PARENT_ALIASES = ("parent", "parentNumber")


# ===========================================================================
# 1. ERRORS
# ===========================================================================

class FraudChainError(Exception):
    """Base class for every error local to a single query."""


class QueryError(FraudChainError):
    """The account number / transaction date pair is missing or invalid."""


class NetworkError(FraudChainError):
    """The request to the fraud API could not complete (connection, timeout)."""


class ApiError(FraudChainError):
    """The fraud API answered with a non-success status or an unreadable body."""

    def __init__(self, status_code: int, body: str, message: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Fraud API returned HTTP {status_code}")


class MalformedTreeError(FraudChainError):
    """The response cannot be shaped into a single rooted tree."""

    def __init__(self, message: str, keys=()):
        self.keys = list(keys)
        if self.keys:
            message = f"{message}: {', '.join(str(k) for k in self.keys)}"
        super().__init__(message)


# ===========================================================================
# 2. QUERY PARSING
# ===========================================================================

def parse_query(args) -> tuple[str, date]:
    """
    Read accountNumber / transactionDate from a request's query args.

    A request with no query parameters at all falls back to the configured
    default account and date, so the bare page still shows a chain.
    """
    if not args:
        account_number = app.config["DEFAULT_ACCOUNT_NUMBER"]
        raw_date = app.config["DEFAULT_TRANSACTION_DATE"]
    else:
        account_number = (args.get("accountNumber") or "").strip()
        raw_date = (args.get("transactionDate") or "").strip()

    if not account_number:
        raise QueryError("accountNumber is required")
    if len(account_number) > ACCOUNT_NUMBER_MAX_LENGTH:
        raise QueryError(
            f"accountNumber must be at most {ACCOUNT_NUMBER_MAX_LENGTH} characters"
        )
    if not raw_date:
        raise QueryError("transactionDate is required")
    try:
        transaction_date = datetime.strptime(raw_date, "%Y-%m-%d").date()
    except ValueError:
        raise QueryError(f"transactionDate must be YYYY-MM-DD, got {raw_date!r}")

    return account_number, transaction_date


# ===========================================================================
# 3. FRAUD-CHAIN FETCHER
# ===========================================================================

def fetch_fraud_chain(account_number: str, transaction_date, base_url: Optional[str] = None,
                      timeout: Optional[float] = None) -> dict:
    """
    Fetch the fraud chain for one debit account on one date.

    Exactly one attempt is made: no retry, no caching. Returns the decoded
    JSON document ``{inputAccNumber, inputTransactionDate, data: [...]}``.

    Raises NetworkError when the request cannot complete and ApiError on a
    non-2xx status or a body that is not JSON.
    """
    base_url = (base_url or app.config["FRAUD_API_BASE_URL"]).rstrip("/")
    timeout = timeout if timeout is not None else app.config["FRAUD_API_TIMEOUT"]
    if isinstance(transaction_date, date):
        transaction_date = transaction_date.isoformat()

    url = f"{base_url}/v1.0/fraudds"
    params = {"accountNumber": account_number, "transactionDate": transaction_date}

    start = time.time()
    try:
        res = requests.get(url, params=params, timeout=timeout)
    except requests.RequestException as e:
        logger.warning("Fraud API unreachable for %s: %s", account_number, e)
        raise NetworkError(f"Could not reach fraud API: {e}") from e

    elapsed = round(time.time() - start, 2)
    logger.info("GET %s account=%s date=%s -> %s in %ss",
                url, account_number, transaction_date, res.status_code, elapsed)

    if not 200 <= res.status_code < 300:
        raise ApiError(res.status_code, res.text)

    try:
        return res.json()
    except ValueError as e:
        raise ApiError(res.status_code, res.text, "Fraud API returned a non-JSON body") from e


# ===========================================================================
# 4. TREE MODEL BUILDER
# ===========================================================================

def _make_root(response: dict) -> dict:
    # Only the fields a root is defined to have; no card/channel/amount
    root = {"key": str(response["inputAccNumber"]), "cardNumber": ROOT_LABEL}
    if response.get("inputTransactionDate") is not None:
        root["inputDate"] = response["inputTransactionDate"]
    return root


def _coerce_amount(key: str, amount):
    if isinstance(amount, bool):
        raise MalformedTreeError("Non-numeric transactionAmount", [key])
    if not isinstance(amount, Number):
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            raise MalformedTreeError("Non-numeric transactionAmount", [key])
    # NaN / Infinity have no JSON encoding
    if not math.isfinite(amount):
        raise MalformedTreeError("Non-numeric transactionAmount", [key])
    return amount


def _normalize_record(index: int, record) -> dict:
    """Rename legacy key/parent fields and drop null label fields."""
    if not isinstance(record, dict):
        raise MalformedTreeError(f"data[{index}] is not an object")

    node = {
        k: v for k, v in record.items()
        if v is not None and k not in _KEY_ALIASES and k not in _PARENT_ALIASES
    }

    key = record.get("key")
    for alias in _KEY_ALIASES:
        if key is None:
            key = record.get(alias)
    if key is None or key == "":
        raise MalformedTreeError(f"data[{index}] has no key")
    node["key"] = str(key)

    parent = record.get(PARENT_KEY_PROPERTY)
    for alias in _PARENT_ALIASES:
        if parent is None:
            parent = record.get(alias)
    if parent is None or parent == "":
        node.pop(PARENT_KEY_PROPERTY, None)
    else:
        node[PARENT_KEY_PROPERTY] = str(parent)

    if "transactionAmount" in node:
        node["transactionAmount"] = _coerce_amount(node["key"], node["transactionAmount"])
    return node


def _validate_tree(nodes: list[dict]) -> None:
    """
    Check the parent-pointer structure of an already normalized node list.

    Builds a parent -> child DiGraph and requires it to be a single
    arborescence rooted at nodes[0]:
      - unique keys
      - no second root (every non-root node has a parentKey)
      - no dangling parentKey
      - every node reachable from the root (no parent cycles)

    Time complexity: O(V) for V nodes.
    """
    root_key = nodes[0]["key"]
    seen: set[str] = set()
    duplicates: list[str] = []
    for node in nodes:
        if node["key"] in seen and node["key"] not in duplicates:
            duplicates.append(node["key"])
        seen.add(node["key"])
    if duplicates:
        raise MalformedTreeError("Duplicate key", duplicates)

    orphans = [n["key"] for n in nodes[1:] if PARENT_KEY_PROPERTY not in n]
    if orphans:
        raise MalformedTreeError("Record without parentKey besides the root", orphans)

    dangling = [n["key"] for n in nodes[1:] if n[PARENT_KEY_PROPERTY] not in seen]
    if dangling:
        raise MalformedTreeError("Dangling parentKey", dangling)

    G = nx.DiGraph()
    G.add_nodes_from(seen)
    G.add_edges_from((n[PARENT_KEY_PROPERTY], n["key"]) for n in nodes[1:])

    reachable = nx.descendants(G, root_key) | {root_key}
    unreachable = [n["key"] for n in nodes if n["key"] not in reachable]
    if unreachable:
        raise MalformedTreeError("Parent cycle, nodes not reachable from root", unreachable)


def build_tree_model(response) -> list[dict]:
    """
    Turn a fraud API response into an ordered, validated node list.

    The root node is synthesized from ``inputAccNumber`` and
    ``inputTransactionDate`` and prepended, unless ``data`` already holds a
    parentless record with that key, which is moved to the front and reduced
    to the root fields. Each remaining ``data`` record follows in
    API order with its key/parentKey relationship untouched. Raises
    MalformedTreeError on any structural violation rather than returning a
    tree the renderer would draw incorrectly.

    An empty ``data`` list yields ``[root]``, which the UI reports as
    "data not found".
    """
    if not isinstance(response, dict):
        raise MalformedTreeError("Response is not a JSON object")
    if response.get("inputAccNumber") in (None, ""):
        raise MalformedTreeError("Response has no inputAccNumber")

    data = response.get("data")
    if data is None:
        data = []
    if not isinstance(data, list):
        raise MalformedTreeError("Response field 'data' is not a list")

    records = [_normalize_record(i, record) for i, record in enumerate(data)]
    root = _make_root(response)

    # The API may already include the debit account itself; a parentless
    # record under the root key becomes the root, trimmed to root fields
    for i, record in enumerate(records):
        if record["key"] == root["key"] and PARENT_KEY_PROPERTY not in record:
            if "inputDate" not in root and "inputDate" in record:
                root["inputDate"] = record["inputDate"]
            del records[i]
            break

    nodes = [root] + records
    _validate_tree(nodes)

    logger.info("Built fraud chain for %s with %d node(s)", nodes[0]["key"], len(nodes))
    return nodes


# ===========================================================================
# 5. RENDERING INTERFACE
# ===========================================================================

def diagram_payload(nodes: list[dict], parent_key_property: str = PARENT_KEY_PROPERTY) -> dict:
    """
    The narrow contract with the diagram engine: the node sequence plus the
    name of the field holding each node's parent reference.
    """
    return {
        "nodeDataArray": nodes,
        "nodeParentKeyProperty": parent_key_property,
        "found": len(nodes) > 1,
    }


def load_tree(args) -> list[dict]:
    """Parse, fetch and build; remembers the result for the downloads."""
    global _last_tree

    account_number, transaction_date = parse_query(args)
    response = fetch_fraud_chain(account_number, transaction_date)
    nodes = build_tree_model(response)
    _last_tree = nodes
    return nodes


# ===========================================================================
# FLASK ENDPOINTS
# ===========================================================================

@app.route("/", methods=["GET"])
def home():
    """
    Render the fraud chain page.

    Query errors, fetch failures and malformed trees are shown as a notice
    in place of the diagram; nothing is partially rendered.
    """
    context = {
        "account_number": request.args.get("accountNumber", app.config["DEFAULT_ACCOUNT_NUMBER"]),
        "transaction_date": request.args.get("transactionDate", app.config["DEFAULT_TRANSACTION_DATE"]),
        "max_length": ACCOUNT_NUMBER_MAX_LENGTH,
        "payload": None,
        "error": None,
    }
    status = 200
    try:
        context["payload"] = diagram_payload(load_tree(request.args))
    except QueryError as e:
        context["error"], status = str(e), 400
    except (NetworkError, ApiError) as e:
        logger.warning("Fetch failed: %s", e)
        context["error"], status = "Failed to load the fraud chain. Please try again.", 502
    except MalformedTreeError as e:
        logger.warning("Malformed fraud chain: %s", e)
        context["error"], status = f"The fraud chain could not be displayed: {e}", 422

    return render_template("index.html", **context), status


@app.route("/api/tree", methods=["GET"])
def api_tree():
    """JSON variant of the page: the diagram payload or an error object."""
    try:
        nodes = load_tree(request.args)
    except QueryError as e:
        return jsonify({"error": str(e)}), 400
    except ApiError as e:
        logger.warning("Fetch failed: %s", e)
        return jsonify({"error": "Failed to load the fraud chain", "status": e.status_code}), 502
    except NetworkError as e:
        logger.warning("Fetch failed: %s", e)
        return jsonify({"error": "Failed to load the fraud chain"}), 502
    except MalformedTreeError as e:
        logger.warning("Malformed fraud chain: %s", e)
        return jsonify({"error": str(e), "keys": e.keys}), 422

    return jsonify(diagram_payload(nodes))


@app.route("/ping", methods=["GET"])
def ping():
    """Health-check / keep-alive endpoint."""
    return jsonify({"status": "alive"})


@app.route("/download-json", methods=["GET"])
def download_json():
    """Return the last rendered tree as a downloadable JSON file."""
    if _last_tree is None:
        return jsonify({"error": "No fraud chain has been loaded yet."}), 404

    return Response(
        json.dumps(_last_tree, indent=2),
        mimetype="application/json",
        headers={"Content-Disposition": "attachment; filename=fraud_chain.json"},
    )


@app.route("/download-csv", methods=["GET"])
def download_csv():
    """Return the last rendered tree as CSV, one row per node."""
    if _last_tree is None:
        return jsonify({"error": "No fraud chain has been loaded yet."}), 404

    df = pd.DataFrame(_last_tree)
    # key and parentKey first, label columns after
    columns = ["key", PARENT_KEY_PROPERTY] + [
        c for c in df.columns if c not in ("key", PARENT_KEY_PROPERTY)
    ]
    df = df.reindex(columns=columns)
    stream = io.StringIO()
    df.to_csv(stream, index=False)

    return Response(
        stream.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=fraud_chain.csv"},
    )


# ===========================================================================
# ENTRY POINT
# ===========================================================================

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    print("🚀  Fraud Chain Viewer running on http://127.0.0.1:5000")
    app.run(debug=True, host="0.0.0.0", port=5000)
