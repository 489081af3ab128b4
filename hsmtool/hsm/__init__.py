"""Connection pool, broker, client and managed connection for talking to an HSM over TCP."""