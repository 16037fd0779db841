import jax

# Lie-group identities are checked at 1e-9-ish tolerances.
jax.config.update("jax_enable_x64", True)
