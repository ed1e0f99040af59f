"""Token addresses queried on Dune."""

BAL = {
    "mainnet": "0xba100000625a3754423978a60c9317c58a424e3D",
    "polygon": "0x9a71012B13CA4d3D0Cdc72A177DF3ef03b0E76A3",
}

BVECVX = "0xfd05D3C7fe2924020620A8bE4961bBaA747e6305"
