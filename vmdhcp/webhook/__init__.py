"""Admission patches and errors, the IP pool mutator and validator, and the VM network config validator."""