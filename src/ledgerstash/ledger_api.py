class LedgerGateway(object):
    """
    Contract for how the engines talk to a ledger.
    Implementation can use a remote node, SQLite, etc.,
    but must keep the same method names and parameters.

    send() returns {"hash": ..., "trunk_hash": ..., "branch_hash": ...}.
    Failures are reported with the LedgerError family from errors.py.
    """

    def new_address(self, seed):
        raise NotImplementedError()

    def send(self, seed, address, message, tag):
        raise NotImplementedError()

    def fetch_record_payload(self, record_hash):
        raise NotImplementedError()

    def close(self):
        pass


class ProofOfWork(object):
    """
    Contract for the attachment engine a gateway uses inside send().
    attach() returns the nonce, or None when the search was interrupted.
    """

    def attach(self, message, min_weight, trunk_hash, branch_hash):
        raise NotImplementedError()

    def interrupt(self):
        raise NotImplementedError()
