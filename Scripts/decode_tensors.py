import argparse
import json
import logging

import numpy as np

from detect_kit import build_decoder, load_detector_profile, load_labels
from detect_kit.preprocess import as_float_output


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Decode raw output tensors saved with np.savez (keys = output names) without running a model."
    )
    parser.add_argument("--profile", required=True, help="Path to a detector profile (JSON).")
    parser.add_argument("--tensors", required=True, help="Path to an .npz file with the raw outputs.")
    parser.add_argument("--threshold", type=float, default=None, help="Override the profile threshold.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    profile = load_detector_profile(args.profile)
    decoder = build_decoder(profile, load_labels(profile.labels_path))
    with np.load(args.tensors) as npz:
        outputs = {name: as_float_output(npz[name], name) for name in npz.files}

    if len(decoder.output_names) == 1 and len(outputs) == 1:
        outputs = {decoder.output_names[0]: next(iter(outputs.values()))}

    kwargs = {} if args.threshold is None else {"threshold": args.threshold}
    results = decoder.decode(outputs, **kwargs)
    print(json.dumps([r.to_dict() if hasattr(r, "to_dict") else vars(r) for r in results], indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
