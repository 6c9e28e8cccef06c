from einsum_tree import Session

# The output layout [m,n] leaves the contraction with a looped M dimension.
session = Session("[m,k],[k,n]->[m,n]", {"m": 128, "n": 96, "k": 64})
root_id = session.tree.get_root().id
print(session.classify_node(root_id).dims.to_dict())

# Permute the left operand so that m becomes its unit-stride dimension.
left_id = session.tree.get_root().left.id
session.add_permutation(left_id)
session.relabel({"id": session.tree.get_root().left.left.id, "value": ["k", "m"]})
print(session.expression)

outcome = session.remove_permutation(root_id)
print(f"remove root permutation applied={outcome.applied} error={outcome.error}")
print(session.explain())
