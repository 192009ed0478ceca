"""Simple usage example for Tempograph.

Wires letters to words, learns an association from co-activation, forgets it
again, and prints the network summary along the way.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tempo_clusters import ActionCluster, BiCluster, associate, disassociate
from tempo_monitoring import health_context
from tempo_scheduler import scheduler


def main():
    letters = BiCluster("letters")
    words = BiCluster("words")
    actions = ActionCluster("actions")

    c, a, t = (letters.create_node() for _ in range(3))
    cat = words.create_node()
    say = actions.create_node(lambda: print(f"  [{scheduler.now()}] cat!"))
    cat.then(say)

    print("=== Co-activation: c, a, t, then 'cat' ===")
    for letter in (c, a, t):
        letter.activate()
        scheduler.run_for(2)
    scheduler.run_for(8)
    cat.activate()
    scheduler.run_for(20)

    associate(letters, words)
    for letter, label in ((c, "c"), (a, "a"), (t, "t")):
        print(f"{label}→cat weight: {letter.posteriors.get(cat).weight:.3f}")
    print(health_context([letters, words, actions]))

    print("\n=== Recall: c, a, t alone ===")
    scheduler.run_for(200)
    for letter in (c, a, t):
        letter.activate()
    scheduler.fast_forward_until_idle()

    print("\n=== Partial cue: c, a ===")
    scheduler.run_for(200)
    c.activate()
    a.activate()
    scheduler.fast_forward_until_idle()
    print(f"  'cat' last fired at {cat.last_activation} (no new firing)")

    print("\n=== Forget ===")
    scheduler.run_for(200)
    for letter in (c, a, t):
        letter.activate()
    scheduler.fast_forward_until_idle()
    scheduler.run_for(20)
    disassociate(letters, words)
    for letter, label in ((c, "c"), (a, "a"), (t, "t")):
        print(f"{label}→cat weight: {letter.posteriors.get(cat).weight:.3f}")
    print(health_context([letters, words, actions]))


if __name__ == "__main__":
    main()
