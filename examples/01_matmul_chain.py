from einsum_tree import Session

# Three matrices multiplied left to right: (A B) C
EXPRESSION = "[[i,k],[k,j]->[i,j]],[j,l]->[i,l]"

session = Session(EXPRESSION, {"i": 64, "k": 32, "j": 48, "l": 16})
print(session.explain())

for node in session.metrics.contraction_nodes:
    outcome = session.classify_node(node.id)
    print(f"# {node.id} {outcome.dims.to_dict()}")
