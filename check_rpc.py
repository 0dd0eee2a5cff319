from dotenv import load_dotenv

load_dotenv()

import os

from web3 import Web3

urls = [u.strip() for u in os.getenv("RPC_URLS", "https://rpc.coredao.org").split(",") if u.strip()]
expected = int(os.getenv("CHAIN_ID", "1116"))
timeout = float(os.getenv("RPC_TIMEOUT_SECONDS", "10"))

if not urls:
    raise SystemExit("Missing RPC_URLS")

for url in urls:
    w3 = Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout}))
    try:
        if not w3.is_connected():
            print(f"{url}: not listening")
            continue
        chain_id = w3.eth.chain_id
        block = w3.eth.block_number
    except Exception as e:
        print(f"{url}: error {type(e).__name__}: {e}")
        continue
    flag = "OK" if chain_id == expected else f"WRONG CHAIN (expected {expected})"
    print(f"{url}: chain_id={chain_id} block={block} {flag}")
