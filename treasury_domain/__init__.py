"""Treasury domain: state, payloads, errors, config and audit journal."""
