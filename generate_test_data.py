"""
Synthetic Fraud Chain Generator for Tree Model Testing
======================================================
Generates fraud API response documents shaped like
{inputAccNumber, inputTransactionDate, data: [...]} with planted
structural defects and an answer key.
"""

import json
import random
from datetime import datetime, timedelta

# --- Configuration ---
OUTPUT_FILE = "test_fraud_chains.json"
ROOT_ACCOUNT = "050601019213501"
INPUT_DATE = "2023-06-13"
CHANNELS = ["ATM", "MOBILE", "INTERNET", "TELLER", "EDC"]
AMOUNT_MIN, AMOUNT_MAX = 50_000, 25_000_000


class ChainGenerator:
    """Builds fraud-chain documents from a seeded random source."""

    def __init__(self, seed=42):
        self.rng = random.Random(seed)
        self.tx_counter = 0

    def next_key(self):
        self.tx_counter += 1
        return f"ACC{self.tx_counter:012d}"

    def rand_card(self):
        return "".join(str(self.rng.randint(0, 9)) for _ in range(16))

    def rand_time(self, base):
        return (base + timedelta(minutes=self.rng.randint(1, 720))).strftime("%Y-%m-%dT%H:%M:%S")

    def record(self, key, parent, base):
        return {
            "key": key,
            "parentKey": parent,
            "cardNumber": self.rand_card(),
            "channelName": self.rng.choice(CHANNELS),
            "transactionAmount": round(self.rng.uniform(AMOUNT_MIN, AMOUNT_MAX), 2),
            "transactionTime": self.rand_time(base),
            "inputDate": INPUT_DATE,
        }

    def chain(self, depth=3, fan_out=2, root=ROOT_ACCOUNT):
        """
        A valid document: every record's parent is the root or an earlier
        record, fanning out up to ``fan_out`` children per level.
        """
        base = datetime.strptime(INPUT_DATE, "%Y-%m-%d")
        data = []
        level = [root]
        for _ in range(depth):
            next_level = []
            for parent in level:
                for _ in range(self.rng.randint(1, fan_out)):
                    key = self.next_key()
                    data.append(self.record(key, parent, base))
                    next_level.append(key)
            level = next_level
        return {"inputAccNumber": root, "inputTransactionDate": INPUT_DATE, "data": data}


# =====================================================================
# PLANTED DEFECTS
# =====================================================================

def with_duplicate_key(doc):
    """Copy the last record under the same key; returns (doc, offending key)."""
    doc = json.loads(json.dumps(doc))
    dup = dict(doc["data"][-1])
    doc["data"].append(dup)
    return doc, dup["key"]


def with_dangling_parent(doc):
    doc = json.loads(json.dumps(doc))
    doc["data"][-1]["parentKey"] = "NO_SUCH_ACCOUNT"
    return doc, doc["data"][-1]["key"]


def with_parent_cycle(doc):
    """Re-parent the first record under its own deepest descendant (needs depth >= 2)."""
    doc = json.loads(json.dumps(doc))
    parents = {r["key"]: r["parentKey"] for r in doc["data"]}
    first = doc["data"][0]
    for rec in reversed(doc["data"][1:]):
        node = rec["key"]
        while node in parents and node != first["key"]:
            node = parents[node]
        if node == first["key"]:
            first["parentKey"] = rec["key"]
            return doc, first["key"]
    raise ValueError("document has no descendant of its first record")


def generate(seed=42):
    gen = ChainGenerator(seed)
    valid = gen.chain(depth=4, fan_out=3)
    empty = {"inputAccNumber": ROOT_ACCOUNT, "inputTransactionDate": INPUT_DATE, "data": []}
    duplicate, dup_key = with_duplicate_key(valid)
    dangling, dangling_key = with_dangling_parent(valid)
    cycle, cycle_key = with_parent_cycle(valid)

    return {
        "documents": {
            "valid": valid,
            "empty": empty,
            "duplicate_key": duplicate,
            "dangling_parent": dangling,
            "parent_cycle": cycle,
        },
        "answer_key": {
            "valid": {"node_count": len(valid["data"]) + 1},
            "empty": {"node_count": 1},
            "duplicate_key": {"keys": [dup_key]},
            "dangling_parent": {"keys": [dangling_key]},
            "parent_cycle": {"includes": cycle_key},
        },
    }


if __name__ == "__main__":
    result = generate()
    with open(OUTPUT_FILE, "w") as f:
        json.dump(result, f, indent=2)
    print(f"Wrote {len(result['documents'])} documents to {OUTPUT_FILE}")
    for name, answer in result["answer_key"].items():
        print(f"  {name}: {answer}")
